import logging
 
_LOG_FMT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_BLUE  = '\033[94m'   # bright blue
_RESET = '\033[0m'
_PATH_RE = __import__('re').compile(
    r'(?:'
    r'[\w./\\-]+/[\w./\\-]+'
    r'|'
    r'\w[\w._-]*\.(?:json|js|mjs|ts|css|xcss|html|map|png|svg|log)'
    r')'
)
 
 
class _ColorStreamFormatter(logging.Formatter):
    """Stream formatter that renders file paths in bright blue."""
    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        return _PATH_RE.sub(lambda m: f"{_BLUE}{m.group()}{_RESET}", msg)
 
 
def configure_logging(verbose: bool = False, log_file: str = 'extbundler.log') -> None:
    """Send DEBUG to ``log_file`` and INFO (DEBUG with ``verbose``) to the console."""
    root_logger = logging.getLogger()
    if getattr(root_logger, '_extbundler_configured', False):
        return

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_LOG_FMT))

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stream_handler.setFormatter(_ColorStreamFormatter(_LOG_FMT))

    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(stream_handler)
    root_logger._extbundler_configured = True
 
 
logger = logging.getLogger(__name__)
