from pathlib import Path

import pytest

from puggle.build import Build
from puggle.core import BuildSettings, Rule
from puggle.custody import Custodian
from puggle.paths import GlobMatcher, OutputDirPathCalc
from puggle.simple import DirectCopyStep
from puggle.tasks import Task, TaskRegistry


def make_settings(tmp_path: Path, purge_dirs: bool | None = None, cache: bool = True):
    settings = BuildSettings(
        input_dir=tmp_path / 'input',
        output_dir=tmp_path / 'output',
        working_dir=tmp_path / 'working',
        custody_cache=tmp_path / 'custody.json' if cache else None,
        purge_dirs=purge_dirs,
    )
    settings['input_dir'].mkdir()
    return settings


def write(path: Path, text: str = ''):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def copy_registry():
    registry = TaskRegistry()
    registry.pipeline('copy', [
        Rule(GlobMatcher('**'), OutputDirPathCalc(), DirectCopyStep()),
    ])
    registry.task('clean')(lambda build: build.clean(force='clean' in build.targets))
    registry.add(Task('default', deps=['copy']))
    return registry


def test_clean_keeps_git(tmp_path: Path):
    settings = make_settings(tmp_path, purge_dirs=True, cache=False)
    write(settings['output_dir'] / '.git' / 'HEAD', 'ref')
    write(settings['output_dir'] / 'index.html')
    write(settings['output_dir'] / 'styles' / 'main.css')
    write(settings['working_dir'] / 'main.raw.html')

    Build(settings, TaskRegistry()).clean()

    assert [p.name for p in settings['output_dir'].iterdir()] == ['.git']
    assert (settings['output_dir'] / '.git' / 'HEAD').read_text() == 'ref'
    assert not list(settings['working_dir'].iterdir())


def test_clean_skipped_without_purge(tmp_path: Path):
    settings = make_settings(tmp_path, purge_dirs=None)
    stale = write(settings['output_dir'] / 'old.html')
    Build(settings, TaskRegistry()).clean()
    assert stale.exists()
    Build(settings, TaskRegistry()).clean(force=True)
    assert not stale.exists()


def test_clean_missing_dirs(tmp_path: Path):
    settings = make_settings(tmp_path, purge_dirs=True)
    Build(settings, TaskRegistry()).clean()
    assert not settings['output_dir'].exists()


def test_is_complete(tmp_path: Path):
    build = Build(make_settings(tmp_path), copy_registry())
    assert build.file_tasks() == {'copy'}
    assert build.is_complete(['default'])
    assert not build.is_complete(['clean'])


def test_orphans_removed(tmp_path: Path):
    settings = make_settings(tmp_path)
    write(settings['input_dir'] / 'a.txt', 'a')
    b_src = write(settings['input_dir'] / 'sub' / 'b.txt', 'b')
    Build(settings, copy_registry(), Custodian()).run(['default'])
    assert (settings['output_dir'] / 'sub' / 'b.txt').exists()

    b_src.unlink()
    b_src.parent.rmdir()
    git_head = write(settings['output_dir'] / '.git' / 'HEAD', 'ref')
    Build(settings, copy_registry(), Custodian()).run(['default'])

    assert (settings['output_dir'] / 'a.txt').read_text() == 'a'
    assert not (settings['output_dir'] / 'sub').exists()
    assert git_head.exists()
    assert settings['custody_cache'].exists()


def test_orphans_kept_for_partial_build(tmp_path: Path):
    settings = make_settings(tmp_path)
    write(settings['input_dir'] / 'a.txt', 'a')
    Build(settings, copy_registry(), Custodian()).run(['default'])
    leftover = write(settings['output_dir'] / 'manual.txt')

    registry = copy_registry()
    registry.task('lint')(lambda build: None)
    Build(settings, registry, Custodian()).run(['lint'])
    assert leftover.exists()


def test_clean_target_forces_purge(tmp_path: Path):
    settings = make_settings(tmp_path)
    leftover = write(settings['output_dir'] / 'manual.txt')
    Build(settings, copy_registry(), Custodian()).run(['clean'])
    assert not leftover.exists()


def test_cache_reused(tmp_path: Path):
    settings = make_settings(tmp_path)
    write(settings['input_dir'] / 'a.txt', 'a')
    Build(settings, copy_registry(), Custodian()).run(['default'])
    output = settings['output_dir'] / 'a.txt'
    mtime = output.stat().st_mtime_ns

    Build(settings, copy_registry(), Custodian()).run(['default'])
    assert output.stat().st_mtime_ns == mtime


def test_rebuild(tmp_path: Path):
    settings = make_settings(tmp_path)
    source = write(settings['input_dir'] / 'a.txt', 'a')
    build = Build(settings, copy_registry(), Custodian())
    build.run(['default'])

    write(source, 'changed')
    runner = build.rebuild(['copy'])
    assert runner.completed == ['copy']
    assert (settings['output_dir'] / 'a.txt').read_text() == 'changed'


def test_rebuild_unknown_task(tmp_path: Path):
    build = Build(make_settings(tmp_path), copy_registry(), Custodian())
    with pytest.raises(KeyError):
        build.rebuild(['nope'])


def test_run_creates_dirs(tmp_path: Path):
    settings = make_settings(tmp_path, cache=False)
    registry = TaskRegistry()
    registry.task('noop')(lambda build: None)
    Build(settings, registry).run(['noop'])
    assert settings['output_dir'].is_dir()
    assert settings['working_dir'].is_dir()
