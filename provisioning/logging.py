"""Colored logging utilities for provisioning output."""


class Colors:
    """ANSI color codes for terminal output."""
    RED: str = '\033[0;31m'
    GREEN: str = '\033[0;32m'
    YELLOW: str = '\033[1;33m'
    BLUE: str = '\033[0;34m'
    CYAN: str = '\033[0;36m'
    BOLD: str = '\033[1m'
    NC: str = '\033[0m'  # No Color / Reset


def log_info(msg: str) -> None:
    """Print an info message in blue."""
    print(f"{Colors.BLUE}[INFO]{Colors.NC} {msg}", flush=True)


def log_success(msg: str) -> None:
    """Print a success message in green."""
    print(f"{Colors.GREEN}[OK]{Colors.NC} {msg}", flush=True)


def log_warn(msg: str) -> None:
    """Print a warning message in yellow."""
    print(f"{Colors.YELLOW}[WARN]{Colors.NC} {msg}", flush=True)


def log_error(msg: str) -> None:
    """Print an error message in red."""
    print(f"{Colors.RED}[ERROR]{Colors.NC} {msg}", flush=True)


def log_step(msg: str) -> None:
    """Print a step header in cyan with bold."""
    print(f"\n{Colors.CYAN}==>{Colors.NC} {Colors.BOLD}{msg}{Colors.NC}", flush=True)


def log_banner(msg: str, width: int = 44) -> None:
    """Print a message framed by ``=`` rules, used for section summaries."""
    rule = "=" * width
    print(f"\n{rule}\n{msg}\n{rule}", flush=True)


def format_elapsed(seconds: float) -> str:
    """Format a duration as ``XmYs`` the way setup summaries report it.

    Args:
        seconds: Elapsed time in seconds

    Returns:
        String like ``"3m 07s"`` or ``"12.4s"`` for sub-minute durations
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs:02d}s"
