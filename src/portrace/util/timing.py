import time
from typing import Optional


def format_elapsed(seconds: float) -> str:
    """Render elapsed seconds as HH:MM:SS.ffffff."""
    if seconds < 0:
        seconds = 0.0
    micros = int(round(seconds * 1_000_000))
    whole, frac = divmod(micros, 1_000_000)
    hours, rem = divmod(whole, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{frac:06d}"


class Stopwatch:
    """Monotonic stopwatch measuring time since the run started."""
    
    def __init__(self, start: bool = True):
        self.start_time: Optional[float] = None
        if start:
            self.start()
    
    def start(self) -> None:
        """Start (or restart) the stopwatch."""
        self.start_time = time.perf_counter()
    
    def elapsed(self) -> float:
        """Get elapsed seconds."""
        if self.start_time is None:
            raise ValueError("Stopwatch not started")
        return time.perf_counter() - self.start_time

    def elapsed_str(self) -> str:
        return format_elapsed(self.elapsed())
