import json
from pathlib import Path

import pytest
from PIL import Image, ImageDraw

from puggle.core import BuildSettings
from puggle.favicon import FaviconError, FaviconStep


def make_master(path: Path, size: int = 512):
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new('RGBA', (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.ellipse((size // 8, size // 8, size * 7 // 8, size * 7 // 8), fill=(36, 124, 191, 255))
    img.save(path)
    return path


@pytest.fixture
def master(step_settings: BuildSettings):
    return make_master(step_settings['input_dir'] / 'favicon.png')


@pytest.fixture
def siteinfo(step_settings: BuildSettings):
    path = step_settings['input_dir'] / 'siteinfo.json'
    path.write_text(json.dumps({
        'name': 'Puggle & Co',
        'url': 'https://puggle.example',
        'color': '#112233',
    }))
    return path


def test_favicon_files(bind_step, step_settings: BuildSettings, master: Path, siteinfo: Path):
    markup = step_settings['working_dir'] / 'favicon.html'
    sources, outputs = bind_step(FaviconStep())(master, [markup])
    out = step_settings['output_dir']

    assert sources == [master, siteinfo]
    assert outputs[0] == markup
    assert {p.name for p in outputs[1:]} == {
        'apple-touch-icon.png',
        'favicon-32x32.png',
        'favicon-16x16.png',
        'android-chrome-192x192.png',
        'android-chrome-512x512.png',
        'site.webmanifest',
        'safari-pinned-tab.svg',
        'favicon.ico',
        'mstile-150x150.png',
        'browserconfig.xml',
    }
    assert all(p.parent == out for p in outputs[1:])

    with Image.open(out / 'apple-touch-icon.png') as img:
        assert img.size == (180, 180)
        assert img.mode == 'RGB'
    with Image.open(out / 'favicon.ico') as img:
        assert img.format == 'ICO'
    with Image.open(out / 'mstile-150x150.png') as img:
        assert img.size == (150, 150)


def test_favicon_markup(bind_step, step_settings: BuildSettings, master: Path, siteinfo: Path):
    markup = step_settings['working_dir'] / 'favicon.html'
    bind_step(FaviconStep())(master, [markup])
    text = markup.read_text()
    assert '<link rel="apple-touch-icon" sizes="180x180" href="/apple-touch-icon.png?v=e4fDD2So21">' in text
    assert '<link rel="manifest" href="/site.webmanifest?v=e4fDD2So21">' in text
    assert 'color="#112233"' in text
    assert 'content="Puggle &amp; Co"' in text
    assert '<meta name="theme-color" content="#ffffff">' in text


def test_favicon_manifest(bind_step, step_settings: BuildSettings, master: Path, siteinfo: Path):
    step = bind_step(FaviconStep({'icons_path': '/icons/', 'version': '', 'app_short_name': 'Puggle'}))
    step(master, [step_settings['working_dir'] / 'favicon.html'])
    manifest = json.loads((step_settings['output_dir'] / 'icons' / 'site.webmanifest').read_text())
    assert manifest['name'] == 'Puggle & Co'
    assert manifest['short_name'] == 'Puggle'
    assert manifest['display'] == 'standalone'
    assert [i['src'] for i in manifest['icons']] == [
        '/icons/android-chrome-192x192.png',
        '/icons/android-chrome-512x512.png',
    ]
    assert 'orientation' not in manifest


def test_favicon_platforms_disabled(bind_step, step_settings: BuildSettings, master: Path):
    step = bind_step(FaviconStep({
        'ios': False,
        'windows': False,
        'android': False,
        'safari_pinned_tab': False,
    }))
    sources, outputs = step(master, [step_settings['working_dir'] / 'favicon.html'])
    assert sources == [master]
    assert {p.name for p in outputs[1:]} == {'favicon-32x32.png', 'favicon-16x16.png', 'favicon.ico'}
    assert 'manifest' not in outputs[0].read_text()


def test_favicon_pinned_tab(bind_step, step_settings: BuildSettings, master: Path):
    bind_step(FaviconStep())(master, [step_settings['working_dir'] / 'favicon.html'])
    svg = (step_settings['output_dir'] / 'safari-pinned-tab.svg').read_text()
    assert svg.startswith('<svg xmlns="http://www.w3.org/2000/svg"')
    assert 'data:image/png;base64,' in svg


def test_favicon_too_small(bind_step, step_settings: BuildSettings):
    small = make_master(step_settings['input_dir'] / 'favicon.png', 64)
    step = bind_step(FaviconStep({'error_on_image_too_small': True}))
    with pytest.raises(FaviconError):
        step(small, [step_settings['working_dir'] / 'favicon.html'])
    bind_step(FaviconStep())(small, [step_settings['working_dir'] / 'favicon.html'])
