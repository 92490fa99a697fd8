from pathlib import Path

import pytest

from puggle.cli import BuildNamespace, load_config, main, parse_settings_args
from puggle.tasks import TaskRegistry


CONFIG = """\
from pathlib import Path

from puggle.core import Rule
from puggle.paths import GlobMatcher, OutputDirPathCalc
from puggle.simple import DirectCopyStep
from puggle.tasks import Task, TaskRegistry

SETTINGS = {
    'input_dir': Path(__file__).parent / 'site',
    'output_dir': Path(__file__).parent / 'out',
}

TASKS = TaskRegistry()
TASKS.pipeline('copy', [Rule(GlobMatcher('**'), OutputDirPathCalc(), DirectCopyStep())],
               description='Copy every file.')


@TASKS.task()
def explode(build):
    raise RuntimeError('kaboom')


TASKS.add(Task('default', deps=['copy']))
"""


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    (tmp_path / 'site').mkdir()
    (tmp_path / 'site' / 'a.txt').write_text('a')
    (tmp_path / 'pugglefile.py').write_text(CONFIG)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_parse_settings_args_defaults():
    args = parse_settings_args(None, [])
    assert args.targets == ['default']
    assert args.input_dir == Path('app')
    assert args.output_dir == Path('dist')
    assert args.working_dir == Path('.tmp')
    assert args.custody_cache is None
    assert args.purge_dirs is None
    assert args.to_build_settings(Path('.tmp'))['purge_dirs'] is True


def test_parse_settings_args_overrides():
    args = parse_settings_args(
        {'input_dir': Path('src'), 'output_dir': Path('public')},
        ['styles', 'html', '--use-temporary', '--custody-cache', 'cache.json', '--no-purge'],
    )
    assert args.targets == ['styles', 'html']
    assert args.input_dir == Path('src')
    assert args.output_dir == Path('public')
    assert args.working_dir is None
    settings = args.to_build_settings(Path('/tmp/x'))
    assert settings['custody_cache'] == Path('cache.json')
    assert settings['purge_dirs'] is False


def test_build_namespace_cached_purge():
    namespace = BuildNamespace({
        'input_dir': Path('app'),
        'output_dir': Path('dist'),
        'custody_cache': Path('cache.json'),
        'purge_dirs': None,
    })
    assert namespace.to_build_settings(Path('.tmp'))['purge_dirs'] is None


def test_load_config_site():
    settings, tasks, custodian = load_config({'SETTINGS': {'input_dir': Path('app')}, 'SITE': {'lint': False}})
    assert settings == {'input_dir': Path('app')}
    assert isinstance(tasks, TaskRegistry)
    assert 'production' in tasks
    assert 'lint' not in tasks
    assert custodian is not None
    assert 'site' in custodian.parameters


def test_load_config_empty():
    assert load_config({}) == (None, None, None)


def test_main_default_config(project: Path):
    main([])
    assert (project / 'out' / 'a.txt').read_text() == 'a'


def test_main_target_without_config_path(project: Path):
    main(['copy', '--working', str(project / 'work')])
    assert (project / 'out' / 'a.txt').exists()
    assert (project / 'work').exists()


def test_main_explicit_config(project: Path, tmp_path_factory: pytest.TempPathFactory):
    other = tmp_path_factory.mktemp('elsewhere')
    main([str(project / 'pugglefile.py'), '-o', str(other / 'out'), '--use-temporary'])
    assert (other / 'out' / 'a.txt').exists()
    assert not (project / 'out').exists()


def test_main_list_tasks(project: Path, capsys: pytest.CaptureFixture):
    main(['--list-tasks'])
    out = capsys.readouterr().out
    assert 'copy Copy every file.' in out
    assert 'default  (after copy)' in out
    assert not (project / 'out').exists()


def test_main_audit_steps(project: Path, capsys: pytest.CaptureFixture):
    main(['--audit-steps'])
    out = capsys.readouterr().out
    assert 'Used steps (1)' in out
    assert 'DirectCopyStep' in out


def test_main_missing_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1
    assert 'No puggle config file found' in capsys.readouterr().err


def test_main_config_without_tasks(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
    monkeypatch.chdir(tmp_path)
    (tmp_path / 'pugglefile.py').write_text('SETTINGS = {}\n')
    with pytest.raises(SystemExit) as exc_info:
        main([])
    assert exc_info.value.code == 1
    assert 'TASKS or SITE' in capsys.readouterr().err


def test_main_task_error(project: Path, capsys: pytest.CaptureFixture):
    with pytest.raises(SystemExit) as exc_info:
        main(['explode'])
    assert exc_info.value.code == 1
    assert 'RuntimeError: kaboom' in capsys.readouterr().err


def test_main_unknown_task(project: Path, capsys: pytest.CaptureFixture):
    with pytest.raises(SystemExit):
        main(['nope'])
    assert "Unknown task 'nope'" in capsys.readouterr().err
