"""
Practical implementations of Matchers and PathCalcs, plus the filename
transforms used by the starter pipelines.
"""
from __future__ import annotations

import re
import typing as t
from pathlib import Path, PurePosixPath

from .core import Context, ContextDir, Matcher, PathCalc
from .custody import CONTEXT_DIR_KEYS


T = t.TypeVar('T')
PathTransform = t.Callable[[Path], Path]

_BRACES = re.compile(r'\{([^{}]*)\}')


def _trim_ext_prefix(path: Path, match: re.Match[str]):
    _groups = match.groupdict()
    if 'stem' in _groups:
        return path.with_stem(_groups['stem'])
    if 'ext' in _groups and _groups['ext']:
        return path.with_name(path.name[:-len(_groups['ext'])])
    return path


def _to_dir_inner(dest: Path,
                  ext: str | None,
                  context: Context,
                  path: Path,
                  match: t.Any,
                  transform: PathTransform | None = None):
    path = _trim_ext_prefix(path, match) if ext and isinstance(match, re.Match) else path

    rel = path.relative_to(
        context['input_dir']
        if path.is_relative_to(context['input_dir'])
        else context['working_dir']
    )
    if transform:
        rel = transform(rel)
    new_path = dest / rel

    if ext is not None:
        new_path = new_path.with_suffix(ext)

    return new_path


def add_suffix(suffix: str) -> PathTransform:
    """
    Transform appending @suffix to the stem: `a/photo.jpg` to
    `a/photo-350px.jpg`.
    """
    def transform(path: Path):
        return path.with_stem(path.stem + suffix)
    return transform


def strip_prefix(prefix: str | Path) -> PathTransform:
    """
    Transform rebasing paths below @prefix: `root/robots.txt` to `robots.txt`.
    """
    def transform(path: Path):
        return path.relative_to(prefix)
    return transform


def drop_suffix() -> PathTransform:
    """
    Transform removing the last extension: `main.min.js.bundle` to
    `main.min.js`.
    """
    def transform(path: Path):
        return path.with_suffix('')
    return transform


def expand_braces(pattern: str) -> list[str]:
    """
    Expand shell-style brace alternatives, innermost first:
    `**/*.{html,json}` becomes `['**/*.html', '**/*.json']`.
    """
    match = _BRACES.search(pattern)
    if not match:
        return [pattern]
    head, tail = pattern[:match.start()], pattern[match.end():]
    expanded = []
    for option in match.group(1).split(','):
        expanded.extend(expand_braces(head + option + tail))
    return list(dict.fromkeys(expanded))


def _segment_regex(segment: str, dot: bool):
    out = []
    i = 0
    while i < len(segment):
        char = segment[i]
        if char == '*':
            out.append('[^/]*')
        elif char == '?':
            out.append('[^/]')
        elif char == '[' and (end := segment.find(']', i + 2)) != -1:
            body = segment[i + 1:end]
            if body.startswith('!'):
                body = '^' + body[1:]
            out.append(f'[{body}]')
            i = end
        else:
            out.append(re.escape(char))
        i += 1
    prefix = '' if dot or segment.startswith('.') else r'(?!\.)'
    return prefix + ''.join(out)


def glob_to_regex(pattern: str, dot: bool = False) -> re.Pattern[str]:
    """
    Compile a single brace-free glob. `**` spans directories, `*` and `?`
    stay within one path segment, and unless @dot is set, wildcards never
    match a leading `.`.
    """
    any_segment = r'[^/]+' if dot else r'(?!\.)[^/]+'
    segments = pattern.split('/')
    parts = []
    for index, segment in enumerate(segments):
        last = index == len(segments) - 1
        if segment == '**':
            parts.append(f'(?:{any_segment}/)*{any_segment}' if last else f'(?:{any_segment}/)*')
        else:
            parts.append(_segment_regex(segment, dot) + ('' if last else '/'))
    return re.compile(''.join(parts) + r'\Z')


class DirPathCalc(PathCalc[T]):
    """
    PathCalc which makes its input paths children of a specified directory.
    If @ext is specified, it will replace the extension of input paths. If the
    matcher produced an re.Match, it will be checked for explicitly defined
    extension information for the input paths, allowing for meaningful work
    with extensions that `pathlib.Path` does not reflect, like `.fetch.toml`.
    """
    def __init__(self,
                 dest: Path | ContextDir,
                 ext: str | None = None,
                 transform: PathTransform | None = None):
        self.dest = dest
        self.ext = ext
        self.transform = transform

    def __call__(self, context: Context, path: Path, match: T) -> Path:
        if self.dest in CONTEXT_DIR_KEYS:
            dest = context[self.dest]
        else:
            dest = Path(self.dest)
        return _to_dir_inner(dest, self.ext, context, path, match, self.transform)


class OutputDirPathCalc(DirPathCalc[T]):
    """
    DirPathCalc targeting the output directory.
    """
    def __init__(self,
                 ext: str | None = None,
                 transform: PathTransform | None = None):
        super().__init__('output_dir', ext, transform)


class WorkingDirPathCalc(DirPathCalc[T]):
    """
    DirPathCalc targeting the working directory.
    """
    def __init__(self,
                 ext: str | None = None,
                 transform: PathTransform | None = None):
        super().__init__('working_dir', ext, transform)


class REMatcher(Matcher[re.Match | None]):
    """
    Path Matcher using regular expressions. @re_flags will be passed to
    `re.compile()`. @parent_dir, if specified, should be a key to a configured
    directory, not a Path, and will be used to handle matching the beginning of
    Paths; this can be used to avoid pitfalls with unexpected characters in
    input or working directories.
    """
    def __init__(self, re_string: str, re_flags: int = 0, parent_dir: ContextDir | None = None):
        self.regex = re.compile(re_string, re_flags)
        self.parent_dir: ContextDir | None = parent_dir

    def __call__(self, context: Context, path: Path):
        if self.parent_dir:
            if not path.is_relative_to(context[self.parent_dir]):
                return None
            path = path.relative_to(context[self.parent_dir])
        return self.regex.match(path.as_posix())


class GlobMatcher(Matcher[re.Match | None]):
    """
    Path Matcher using gulp-style glob lists, relative to @parent_dir.
    Patterns starting with `!` exclude paths matched by earlier patterns.
    """
    def __init__(self,
                 patterns: str | t.Sequence[str],
                 parent_dir: ContextDir = 'input_dir',
                 dot: bool = False):
        if isinstance(patterns, str):
            patterns = [patterns]
        self.patterns = list(patterns)
        self.parent_dir: ContextDir = parent_dir
        self.include: list[re.Pattern[str]] = []
        self.exclude: list[re.Pattern[str]] = []
        for pattern in self.patterns:
            negated = pattern.startswith('!')
            target = self.exclude if negated else self.include
            for expanded in expand_braces(pattern.lstrip('!')):
                # Exclusions apply to dotfiles too.
                target.append(glob_to_regex(expanded, dot=dot or negated))

    def match_relative(self, rel: str | PurePosixPath):
        """
        Match a path given relative to the parent directory, as posix text.
        """
        rel = str(rel)
        if any(r.match(rel) for r in self.exclude):
            return None
        for regex in self.include:
            if match := regex.match(rel):
                return match
        return None

    def __call__(self, context: Context, path: Path):
        parent = context[self.parent_dir]
        if not path.is_relative_to(parent):
            return None
        return self.match_relative(path.relative_to(parent).as_posix())
