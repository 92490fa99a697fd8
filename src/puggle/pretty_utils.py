"""
Internal utilities for progress bars and pretty printing.
"""
from __future__ import annotations

import threading
import typing as t
from pathlib import Path

import rich.console
import rich.filesize
import rich.markup
import rich.progress


T = t.TypeVar('T')

_consoles = {
    # Resolve sys.stdout and sys.stderr on every write, so redirection works.
    'stdout': rich.console.Console(),
    'stderr': rich.console.Console(stderr=True),
}
# rich allows a single live display per console; parallel tasks take turns.
_progress_lock = threading.Lock()


def track_progress(iterable: t.Iterable[T], desc: str) -> t.Iterable[T]:
    """
    Progress tracker using rich progress bars. If another thread already owns
    the live display, the iterable is passed through after printing @desc.
    """
    if _progress_lock.acquire(blocking=False):
        try:
            yield from rich.progress.track(iterable, desc, console=_consoles['stdout'])
        finally:
            _progress_lock.release()
    else:
        print_with_style(desc, style='dim')
        yield from iterable


def print_with_style(*args, sep=' ', end='\n', file: str = 'stdout', style=None):
    """
    print() replacement supporting rich console styles.
    """
    _consoles[file].print(*args, sep=sep, end=end, style=style)


def format_duration(seconds: float):
    if seconds < 1:
        return f'{seconds * 1000:.0f} ms'
    return f'{seconds:.2f} s'


def report_size(title: str, paths: t.Iterable[Path], show_files: bool = False):
    """
    Print the total size of @paths, and optionally of each file, in the manner
    of gulp-size.
    """
    total = 0
    for path in paths:
        if not path.is_file():
            continue
        size = path.stat().st_size
        total += size
        if show_files:
            print_with_style(
                f'[cyan]{title}[/cyan] {rich.markup.escape(path.name)} [magenta]{rich.filesize.decimal(size)}[/magenta]'
            )
    print_with_style(f'[cyan]{title}[/cyan] all files [magenta]{rich.filesize.decimal(total)}[/magenta]')
    return total
