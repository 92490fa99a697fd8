import json
from pathlib import Path

import pytest

from puggle.build import Build
from puggle.core import BuildSettings
from puggle.custody import Custodian, CustodyEntry, checksum
from puggle.tasks import TaskRegistry


@pytest.fixture
def build(tmp_path: Path):
    settings = BuildSettings(
        input_dir=tmp_path / 'input',
        output_dir=tmp_path / 'output',
        working_dir=tmp_path / 'working',
        custody_cache=tmp_path / 'custody.json',
        purge_dirs=None,
    )
    for key in ('input_dir', 'output_dir', 'working_dir'):
        settings[key].mkdir()
    return Build(settings, TaskRegistry(), Custodian({'test': 1}))


def write(path: Path, text: str):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_checksum(tmp_path: Path):
    path = write(tmp_path / 'a.txt', 'abc')
    assert checksum(path) == 'a9993e364706816aba3e25717850c26c9cd0d89d'
    assert checksum(tmp_path) == ''


def test_genericize_roundtrip(build: Build):
    custodian = build.custodian
    path = build['working_dir'] / 'styles' / 'main.css'
    assert custodian.genericize_path(path) == 'working_dir/styles/main.css'
    assert custodian.degenericize_path('working_dir/styles/main.css') == path
    assert custodian.degenericize_path('output_dir') == build['output_dir']


def test_refresh_needed_fresh_cache(build: Build):
    source = write(build['input_dir'] / 'a.txt', 'a')
    output = write(build['output_dir'] / 'a.txt', 'A')
    stale, msg = build.custodian.refresh_needed(source, [output])
    assert stale
    assert msg == 'Stale parameters'


def run_once(build: Build, source: Path, output: Path):
    custodian = build.custodian
    stale, msg = custodian.refresh_needed(source, [output])
    if stale:
        write(output, source.read_text().upper())
        custodian.add_step([source], [output], msg)
    else:
        custodian.skip_step(source, [output])
    return stale, msg


def reload(build: Build):
    new_build = Build(build.settings, build.registry, Custodian({'test': 1}))
    new_build.custodian.load_file(build['custody_cache'])
    return new_build


def test_refresh_cycle(build: Build):
    source = write(build['input_dir'] / 'a.txt', 'a')
    output = build['output_dir'] / 'a.txt'
    assert run_once(build, source, output)[0]
    build.custodian.dump_file(build['custody_cache'])

    second = reload(build)
    assert run_once(second, source, output) == (False, 'Up to date')

    write(source, 'b')
    third = reload(build)
    stale, msg = run_once(third, source, output)
    assert stale
    assert msg == 'Stale upstream (input_dir/a.txt)'

    output.unlink()
    fourth = reload(build)
    stale, msg = third.custodian.refresh_needed(source, [output])
    assert stale
    assert msg.startswith('Missing output')
    assert fourth.custodian.refresh_needed(source, [output])[0]


def test_stale_parameters(build: Build):
    source = write(build['input_dir'] / 'a.txt', 'a')
    output = build['output_dir'] / 'a.txt'
    run_once(build, source, output)
    build.custodian.dump_file(build['custody_cache'])

    changed = Build(build.settings, build.registry, Custodian({'test': 2}))
    changed.custodian.load_file(build['custody_cache'])
    assert changed.custodian.stale_parameters
    assert changed.custodian.refresh_needed(source, [output]) == (True, 'Stale parameters')


def test_no_outputs_always_refresh(build: Build):
    source = write(build['input_dir'] / 'a.js', 'a')
    build.custodian.stale_parameters = False
    assert build.custodian.refresh_needed(source, []) == (True, 'No recorded outputs')


def test_carry_forward(build: Build):
    a_src = write(build['input_dir'] / 'a.txt', 'a')
    b_src = write(build['input_dir'] / 'b.txt', 'b')
    a_out = build['output_dir'] / 'a.txt'
    b_out = build['output_dir'] / 'b.txt'
    run_once(build, a_src, a_out)
    run_once(build, b_src, b_out)
    build.custodian.dump_file(build['custody_cache'])

    # A partial build revisits only a.txt.
    partial = reload(build)
    run_once(partial, a_src, a_out)
    partial.custodian.carry_forward()
    assert 'output_dir/b.txt' in partial.custodian.graph
    assert 'input_dir/b.txt' in partial.custodian.meta

    # Changed sources are not carried forward.
    write(b_src, 'changed')
    changed = reload(build)
    run_once(changed, a_src, a_out)
    changed.custodian.carry_forward()
    assert 'output_dir/b.txt' not in changed.custodian.graph


def test_advance(build: Build):
    source = write(build['input_dir'] / 'a.txt', 'a')
    output = build['output_dir'] / 'a.txt'
    run_once(build, source, output)
    build.custodian.advance()
    assert not build.custodian.graph
    assert run_once(build, source, output) == (False, 'Up to date')


def test_custom_checker(build: Build):
    source = write(build['input_dir'] / 'a.toml', 'url = "x"')
    output = write(build['output_dir'] / 'a.js', 'js')
    custodian = build.custodian
    calls = []

    @custodian.register_checker('remote')
    def remote_fresh(entry: CustodyEntry):
        calls.append(entry.key)
        return entry['etag'] == 'v1'

    custodian.add_step([source, CustodyEntry('remote', 'https://example.com/a.js', {'etag': 'v1'})], [output], 'test')
    custodian.dump_file(build['custody_cache'])

    data = json.loads(build['custody_cache'].read_text())
    assert data['meta']['https://example.com/a.js'] == ['remote', {'etag': 'v1'}]
    assert data['parameters']['test'] == 1

    second = reload(build)
    second.custodian.register_checker('remote')(remote_fresh)
    assert second.custodian.refresh_needed(source, [output]) == (False, 'Up to date')
    assert calls == ['https://example.com/a.js']


def test_log_step_markup(build: Build, capsys: pytest.CaptureFixture):
    custodian = build.custodian
    custodian.log_step([CustodyEntry('fetch', '[/cdn]')], [Path('a[b].txt')], stale_msg='Refetching [x]')
    custodian.log_step([CustodyEntry('fetch', '[/cdn]')], [Path('a[b].txt')], stale=False)
    out = capsys.readouterr().out
    assert 'Refetching [x]...' in out
    assert out.count('fetch:[/cdn] ⇒ a[b].txt') == 2
