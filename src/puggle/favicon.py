"""
Favicon generation: platform icons, manifests and the HTML markup that
references them, all derived from a single master picture with Pillow.
"""
from __future__ import annotations

import base64
import html
import io
import json
import typing as t
from pathlib import Path
from xml.sax.saxutils import escape as xml_escape

from .config import FAVICON_OPTIONS, FaviconOptions, load_siteinfo, merge_options
from .dependencies import PipDependency
from .images import get_resampling
from .paths import WorkingDirPathCalc
from .simple import BaseStandardStep, write_if_changed

if t.TYPE_CHECKING:
    from PIL.Image import Image


DESKTOP_SIZES = (16, 32)
ICO_SIZES = (16, 32, 48)
APPLE_TOUCH_SIZE = 180
ANDROID_SIZES = (192, 512)
TILE_SIZE = 150
TILE_ICON_RATIO = 0.5
PINNED_TAB_SIZE = 256
MIN_MASTER_SIZE = max(ANDROID_SIZES)


class FaviconError(ValueError):
    """
    Raised when the master picture cannot produce the configured icons.
    """


def favicon_markup_calc(options: FaviconOptions | None = None):
    """
    PathCalc placing the favicon markup file in the working directory.
    """
    markup = merge_options(FAVICON_OPTIONS, options)['markup_file']
    return WorkingDirPathCalc(transform=lambda _path: Path(markup))


class FaviconStep(BaseStandardStep):
    """
    Generate favicons for desktop browsers, iOS, Android Chrome, Windows tiles
    and Safari pinned tabs. The first output path receives the `<head>`
    markup, which the html pipeline injects into every page; icons are written
    below the output directory according to `icons_path`.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('Pillow', check_name='PIL'),
        }

    def __init__(self, options: FaviconOptions | None = None, siteinfo: str = 'siteinfo.json'):
        self.options = options or {}
        self.siteinfo = siteinfo

    def resolve_options(self, siteinfo: dict[str, t.Any]) -> FaviconOptions:
        """
        Fill app name, URL and color from `siteinfo.json` where the options do
        not set them.
        """
        defaults = merge_options(FAVICON_OPTIONS, {
            'app_name': siteinfo.get('name') or 'My Site',
            'app_url': siteinfo.get('url') or 'https://example.com',
            'app_description': siteinfo.get('description', ''),
        })
        if siteinfo.get('color'):
            defaults['foreground_color'] = siteinfo['color']
        resolved = t.cast(FaviconOptions, merge_options(defaults, self.options))
        resolved.setdefault('app_short_name', resolved['app_name'])
        return resolved

    def href(self, name: str, opts: FaviconOptions):
        base = opts['icons_path'].rstrip('/') + '/'
        if opts['version']:
            return f'{base}{name}?{opts["version_param"]}={opts["version"]}'
        return base + name

    def __call__(self, path: Path, output_paths: list[Path]):
        from PIL import Image

        siteinfo_path = self.context['input_dir'] / self.siteinfo
        siteinfo = load_siteinfo(siteinfo_path) if siteinfo_path.exists() else {}
        opts = self.resolve_options(siteinfo)
        icon_dir = self.context['output_dir'] / opts['icons_path'].strip('/')
        icon_dir.mkdir(parents=True, exist_ok=True)
        resample = get_resampling(opts['scaling_algorithm'])

        with Image.open(path) as img:
            master = img.convert('RGBA')
        if min(master.size) < MIN_MASTER_SIZE and opts['error_on_image_too_small']:
            raise FaviconError(
                f'{path} is {master.width}x{master.height}, '
                f'at least {MIN_MASTER_SIZE}x{MIN_MASTER_SIZE} is needed'
            )

        written: list[Path] = []
        markup: list[str] = []

        def save(name: str, image: Image, **params):
            target = icon_dir / name
            image.save(target, **params)
            written.append(target)
            return target

        if opts['ios']:
            save('apple-touch-icon.png', self.with_background(master, APPLE_TOUCH_SIZE, opts, resample))
            markup.append(
                f'<link rel="apple-touch-icon" sizes="{APPLE_TOUCH_SIZE}x{APPLE_TOUCH_SIZE}" '
                f'href="{self.href("apple-touch-icon.png", opts)}">'
            )
        if opts['desktop_browser']:
            for size in reversed(DESKTOP_SIZES):
                name = f'favicon-{size}x{size}.png'
                save(name, self.square(master, size, resample))
                markup.append(
                    f'<link rel="icon" type="image/png" sizes="{size}x{size}" href="{self.href(name, opts)}">'
                )
        if opts['android']:
            icons = []
            for size in ANDROID_SIZES:
                name = f'android-chrome-{size}x{size}.png'
                icon = self.square(master, size, resample)
                if opts['android_shadow']:
                    icon = self.with_shadow(icon)
                save(name, icon)
                icons.append({'src': self.href(name, opts), 'sizes': f'{size}x{size}', 'type': 'image/png'})
            written.append(self.write_manifest(icon_dir / 'site.webmanifest', icons, opts))
            markup.append(f'<link rel="manifest" href="{self.href("site.webmanifest", opts)}">')
        if opts['safari_pinned_tab']:
            written.append(self.write_pinned_tab(icon_dir / 'safari-pinned-tab.svg', master, opts, resample))
            markup.append(
                f'<link rel="mask-icon" href="{self.href("safari-pinned-tab.svg", opts)}" '
                f'color="{opts["foreground_color"]}">'
            )
        if opts['desktop_browser']:
            save('favicon.ico', self.square(master, max(ICO_SIZES), resample),
                 format='ICO', sizes=[(s, s) for s in ICO_SIZES])
            markup.append(f'<link rel="shortcut icon" href="{self.href("favicon.ico", opts)}">')

        app_name = html.escape(opts['app_name'])
        markup.append(f'<meta name="apple-mobile-web-app-title" content="{app_name}">')
        markup.append(f'<meta name="application-name" content="{app_name}">')
        if opts['windows']:
            save(f'mstile-{TILE_SIZE}x{TILE_SIZE}.png', self.silhouette(master, resample))
            written.append(self.write_browserconfig(icon_dir / 'browserconfig.xml', opts))
            markup.append(f'<meta name="msapplication-TileColor" content="{opts["foreground_color"]}">')
            markup.append(f'<meta name="msapplication-config" content="{self.href("browserconfig.xml", opts)}">')
        markup.append(f'<meta name="theme-color" content="{opts["background_color"]}">')

        self.ensure_output_dirs(output_paths)
        write_if_changed(output_paths[0], '\n'.join(markup) + '\n', self.encoding, self.newline)
        self.duplicate_output_paths(output_paths)

        sources = [path, siteinfo_path] if siteinfo_path.exists() else [path]
        return sources, [*output_paths, *written]

    # Image helpers

    def square(self, master: Image, size: int, resample) -> Image:
        from PIL import ImageOps
        return ImageOps.pad(master, (size, size), method=resample, color=(0, 0, 0, 0))

    def with_background(self, master: Image, size: int, opts: FaviconOptions, resample) -> Image:
        """
        Icon on a solid background with a margin, the iOS style.
        """
        from PIL import Image
        canvas = Image.new('RGBA', (size, size), opts['background_color'])
        inner = max(1, round(size * (1 - opts['ios_margin'])))
        icon = self.square(master, inner, resample)
        offset = (size - inner) // 2
        canvas.alpha_composite(icon, (offset, offset))
        return canvas.convert('RGB')

    def with_shadow(self, icon: Image) -> Image:
        """
        Shrink @icon slightly and cast a soft drop shadow below it.
        """
        from PIL import Image, ImageFilter
        size = icon.width
        inner = round(size * 0.9)
        shrunk = icon.resize((inner, inner))
        offset = (size - inner) // 2
        shadow = Image.new('RGBA', icon.size, (0, 0, 0, 0))
        alpha = shrunk.getchannel('A').point(lambda a: a * 2 // 5)
        shadow.paste((0, 0, 0, 255), (offset, offset + max(1, size // 50)), alpha)
        shadow = shadow.filter(ImageFilter.GaussianBlur(max(1, size // 50)))
        shadow.alpha_composite(shrunk, (offset, offset))
        return shadow

    def silhouette(self, master: Image, resample) -> Image:
        """
        White silhouette of the icon on a transparent Windows tile.
        """
        from PIL import Image
        inner = round(TILE_SIZE * TILE_ICON_RATIO)
        icon = self.square(master, inner, resample)
        white = Image.new('RGBA', icon.size, (255, 255, 255, 0))
        white.putalpha(icon.getchannel('A'))
        tile = Image.new('RGBA', (TILE_SIZE, TILE_SIZE), (255, 255, 255, 0))
        offset = (TILE_SIZE - inner) // 2
        tile.alpha_composite(white, (offset, offset))
        return tile

    # Text outputs

    def write_manifest(self, target: Path, icons: list[dict[str, str]], opts: FaviconOptions):
        manifest: dict[str, t.Any] = {
            'name': opts['app_name'],
            'short_name': opts['app_short_name'],
            'description': opts['app_description'],
            'lang': opts['lang'],
            'start_url': opts['start_url'],
            'display': opts['display'],
            'theme_color': opts['background_color'],
            'background_color': opts['background_color'],
            'icons': icons,
        }
        if opts['orientation']:
            manifest['orientation'] = opts['orientation']
        write_if_changed(target, json.dumps(manifest, indent=2) + '\n', self.encoding, self.newline)
        return target

    def write_browserconfig(self, target: Path, opts: FaviconOptions):
        tile = self.href(f'mstile-{TILE_SIZE}x{TILE_SIZE}.png', opts)
        data = '\n'.join([
            '<?xml version="1.0" encoding="utf-8"?>',
            '<browserconfig>',
            '  <msapplication>',
            '    <tile>',
            f'      <square{TILE_SIZE}x{TILE_SIZE}logo src="{xml_escape(tile)}"/>',
            f'      <TileColor>{xml_escape(opts["foreground_color"])}</TileColor>',
            '    </tile>',
            '  </msapplication>',
            '</browserconfig>',
            '',
        ])
        write_if_changed(target, data, self.encoding, self.newline)
        return target

    def write_pinned_tab(self, target: Path, master: Image, opts: FaviconOptions, resample):
        """
        Black-and-white mask icon: opaque pixels darker than the threshold
        become black, everything else transparent.
        """
        from PIL import Image
        icon = self.square(master, PINNED_TAB_SIZE, resample)
        flat = Image.new('RGBA', icon.size, (255, 255, 255, 255))
        flat.alpha_composite(icon)
        cutoff = 255 * opts['safari_threshold'] / 100
        luminance = flat.convert('L')
        mask = Image.eval(luminance, lambda v: 255 if v < cutoff else 0)
        mask = Image.composite(mask, Image.new('L', icon.size, 0), icon.getchannel('A'))
        mono = Image.new('RGBA', icon.size, (0, 0, 0, 0))
        mono.paste((0, 0, 0, 255), (0, 0), mask)

        buffer = io.BytesIO()
        mono.save(buffer, format='PNG', optimize=True)
        encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
        data = (
            f'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 {PINNED_TAB_SIZE} {PINNED_TAB_SIZE}">'
            f'<image width="{PINNED_TAB_SIZE}" height="{PINNED_TAB_SIZE}" '
            f'href="data:image/png;base64,{encoded}"/></svg>\n'
        )
        write_if_changed(target, data, self.encoding, self.newline)
        return target
