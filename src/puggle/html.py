"""
Steps for rendering pages with Jinja, rewriting their asset references, and
minifying the result.
"""
from __future__ import annotations

import re
import subprocess
import typing as t
from pathlib import Path

from .config import HTMLMIN_OPTIONS, HTMLMinOptions, load_json, load_siteinfo, merge_options
from .dependencies import PipDependency
from .simple import BaseStandardStep

if t.TYPE_CHECKING:
    from jinja2 import BaseLoader, Environment


BUILD_BLOCK = re.compile(
    r'(?P<indent>[ \t]*)<!--\s*build:(?P<type>\w+)(?:\((?P<alt>[^)]*)\))?\s*(?P<target>\S+)?\s*-->'
    r'.*?<!--\s*endbuild\s*-->',
    re.DOTALL,
)
HEAD_CLOSE = re.compile(r'</head\s*>', re.IGNORECASE)
REFERENCE_TEMPLATES = {
    'css': '<link rel="stylesheet" href="{target}">',
    'js': '<script src="{target}"></script>',
}


class MissingHistoryError(LookupError):
    """
    Raised when git has no history for a page whose dates are requested.
    """
    def __init__(self, path: Path):
        self.path = path
        super().__init__(f'No git history for {path}')


def git_last_modified(path: Path) -> str:
    """
    ISO-8601 date of the last commit touching @path.
    """
    result = subprocess.run(
        ['git', 'log', '-1', '--format=%cI', '--', path.name],
        cwd=path.parent,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise MissingHistoryError(path) from subprocess.CalledProcessError(
            result.returncode, result.args, result.stdout, result.stderr
        )
    if not (date := result.stdout.strip()):
        raise MissingHistoryError(path)
    return date


def replace_build_blocks(text: str) -> str:
    """
    Replace every `<!-- build:TYPE TARGET -->...<!-- endbuild -->` block with
    a single reference to TARGET. `build:remove` blocks are dropped. The
    referenced assets themselves are produced by other pipelines.
    """
    def replace(match: re.Match[str]):
        block_type = match['type']
        if block_type == 'remove':
            return ''
        try:
            template = REFERENCE_TEMPLATES[block_type]
        except KeyError as e:
            raise ValueError(f'Unknown build block type {block_type!r}') from e
        if not match['target']:
            raise ValueError(f'build:{block_type} block without a target path')
        return match['indent'] + template.format(target=match['target'])

    return BUILD_BLOCK.sub(replace, text)


def inject_head_markup(text: str, markup: str) -> str:
    """
    Insert @markup right before `</head>`. Documents without one are returned
    unchanged.
    """
    if not markup.strip():
        return text
    return HEAD_CLOSE.sub(lambda m: markup.rstrip('\n') + '\n' + m.group(0), text, count=1)


class JinjaPageStep(BaseStandardStep):
    """
    Render a Jinja page. Each page needs a JSON sidecar file with the same
    stem (`about.jinja` reads `about.json`), exposed to the template as
    `page`; `siteinfo.json` is exposed as `siteinfo`. Every template loaded
    during rendering is recorded as a source of the page.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('Jinja2', check_name='jinja2'),
        }

    def __init__(self,
                 siteinfo: str = 'siteinfo.json',
                 extra_globals: dict[str, t.Any] | None = None,
                 git_dates: bool = False):
        self.siteinfo = siteinfo
        self.extra_globals = extra_globals or {}
        self.git_dates = git_dates
        self._env: Environment | None = None
        self._loaded: list[Path] = []

    @property
    def env(self):
        """
        The Jinja `Environment` for this Step, created on first use.
        """
        if self._env:
            return self._env

        from jinja2 import Environment, FileSystemLoader, select_autoescape

        step = self

        class RecordingLoader(FileSystemLoader):
            def get_source(self, environment: Environment, template: str):
                source, filename, uptodate = super().get_source(environment, template)
                step._loaded.append(Path(filename))
                return source, filename, uptodate

        self._env = Environment(
            loader=RecordingLoader(self.context['input_dir']),
            autoescape=select_autoescape(['html', 'jinja']),
            # Without a cache every render reloads, and so records, its templates.
            cache_size=0,
        )
        self._env.globals.update(self.extra_globals)
        return self._env

    def __call__(self, path: Path, output_paths: list[Path]):
        input_dir = self.context['input_dir']
        sidecar = path.with_suffix('.json')
        siteinfo_path = input_dir / self.siteinfo
        page = load_json(sidecar, needed_by=path)
        siteinfo = load_siteinfo(siteinfo_path)
        if self.git_dates:
            page.setdefault('updated', git_last_modified(path))

        self._loaded = []
        template = self.env.get_template(path.relative_to(input_dir).as_posix())
        with self.ensure_outputs(output_paths):
            template.stream(siteinfo=siteinfo, page=page).dump(str(output_paths[0]), encoding=self.encoding)

        templates = [p for p in dict.fromkeys(self._loaded) if p.resolve() != path.resolve()]
        return [path, sidecar, siteinfo_path, *templates], output_paths


class UserefStep(BaseStandardStep):
    """
    Rewrite asset build blocks into single references and inject the favicon
    markup, when present, into `<head>`.
    """
    def __init__(self, markup_file: str | None = 'favicon.html'):
        self.markup_file = markup_file

    @property
    def markup_path(self):
        return self.context['working_dir'] / self.markup_file if self.markup_file else None

    def __call__(self, path: Path, output_paths: list[Path]):
        text = replace_build_blocks(path.read_text(self.encoding))
        sources = [path]
        if (markup_path := self.markup_path) and markup_path.is_file():
            text = inject_head_markup(text, markup_path.read_text(self.encoding))
            sources.append(markup_path)
        self.write_text(output_paths, text)
        return sources, output_paths


class HTMLMinifierStep(BaseStandardStep):
    """
    Minify HTML with minify-html.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('minify-html', check_name='minify_html'),
        }

    def __init__(self, options: HTMLMinOptions | None = None):
        self.options = t.cast(HTMLMinOptions, merge_options(HTMLMIN_OPTIONS, options))

    def __call__(self, path: Path, output_paths: list[Path]):
        import minify_html
        data = minify_html.minify(path.read_text(self.encoding), **self.options)
        self.write_text(output_paths, data)
