from colorama import Fore, Style
 
from .logging import _PATH_RE, _BLUE, _RESET
 
 
class ProgressDisplay:
    """Display progress updates with colors."""
 
    STAGE_COLORS = {
        'CONFIG': Fore.WHITE,
        'PREBUILD': Fore.CYAN,
        'MANIFEST': Fore.BLUE,
        'BUILD_UI': Fore.MAGENTA,
        'BUILD_BACKGROUND': Fore.MAGENTA,
        'BUILD_HEALTH': Fore.MAGENTA,
        'CSS': Fore.YELLOW,
        'MINIFY_CSS': Fore.YELLOW,
        'MINIFY_JS': Fore.YELLOW,
        'COMPLETE': Fore.GREEN,
    }
 
    @staticmethod
    def show(stage: str, message: str):
        """Show progress message."""
        color = ProgressDisplay.STAGE_COLORS.get(stage, Fore.WHITE)
        message = _PATH_RE.sub(lambda m: f"{_BLUE}{m.group()}{_RESET}", message)
        print(f"{color}[{stage}]{Style.RESET_ALL} {message}")
