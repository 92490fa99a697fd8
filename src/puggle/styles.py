"""
Steps for compiling, prefixing and minifying stylesheets.
"""
from __future__ import annotations

import typing as t
from collections.abc import Sequence
from pathlib import Path

from .dependencies import PipDependency
from .simple import BaseStandardStep


class SassStep(BaseStandardStep):
    """
    Compile a Sass/SCSS file into CSS using libsass. Partials found next to
    or below the compiled file are recorded as its sources, so editing one
    rebuilds every stylesheet that might import it.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('libsass', check_name='sass'),
        }

    def __init__(self,
                 precision: int = 10,
                 output_style: t.Literal['nested', 'expanded', 'compact', 'compressed'] = 'expanded',
                 source_maps: bool = False,
                 include_paths: Sequence[Path] = ()):
        self.precision = precision
        self.output_style = output_style
        self.source_maps = source_maps
        self.include_paths = list(include_paths)

    def find_partials(self, path: Path):
        roots = [path.parent, *self.include_paths]
        return sorted({p for root in roots for p in root.rglob('_*.scss') if p.is_file()})

    def __call__(self, path: Path, output_paths: list[Path]):
        import sass

        options: dict[str, t.Any] = {
            'filename': str(path),
            'precision': self.precision,
            'output_style': self.output_style,
            'include_paths': [str(p) for p in self.include_paths],
        }
        outputs = list(output_paths)
        if self.source_maps:
            map_path = output_paths[0].with_name(output_paths[0].name + '.map')
            css, source_map = sass.compile(
                **options,
                output_filename_hint=str(output_paths[0]),
                source_map_filename=str(map_path),
                source_map_contents=True,
            )
            self.write_text(output_paths, css)
            map_path.write_text(source_map, self.encoding, newline=self.newline)
            outputs.append(map_path)
        else:
            self.write_text(output_paths, sass.compile(**options))

        return [path, *self.find_partials(path)], outputs


class CSSMinifierStep(BaseStandardStep):
    """
    Add vendor prefixes for the supported browsers and minify CSS, using
    lightningcss.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lightningcss')
        }

    def __init__(self,
                 error_recovery: bool = False,
                 parser_flags: dict[str, bool] | None = None,
                 unused_symbols: set[str] | None = None,
                 browsers_list: Sequence[str] | None = ('defaults',),
                 minify: bool = True):
        self.error_recovery = error_recovery
        self.parser_flags = parser_flags or {}
        self.unused_symbols = unused_symbols
        self.browsers_list = list(browsers_list) if browsers_list else None
        self.minify = minify

    def __call__(self, path: Path, output_paths: list[Path]):
        import lightningcss
        data = lightningcss.process_stylesheet(
            path.read_text(self.encoding),
            filename=str(path),
            error_recovery=self.error_recovery,
            parser_flags=lightningcss.calc_parser_flags(**self.parser_flags),
            unused_symbols=self.unused_symbols,
            browsers_list=self.browsers_list,
            minify=self.minify
        )
        self.write_text(output_paths, data)
