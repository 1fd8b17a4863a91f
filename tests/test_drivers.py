import re
from io import StringIO

import pytest
from murmurhash2 import murmurhash2

import soldec
import soldec_dump


@pytest.fixture
def script(tmp_path):
    def write(h: str):
        p = tmp_path / 'script.bin'
        p.write_bytes(bytes.fromhex(h))
        return str(p)
    return write


def test_parse_off():
    assert soldec.parse_off('0x1F') == 0x1F
    assert soldec.parse_off('0X10') == 0x10
    assert soldec.parse_off('10') is None
    assert soldec.parse_off('0xZZ') is None


def test_main_decompiles_from_offset(script, capsys):
    path = script('ff ff  30 41 42 a4 a0  00')
    assert soldec.main(['soldec.py', path, '0x2']) == 0
    out, err = capsys.readouterr()
    assert out == 'p0 + p1\n'
    assert err == ''


def test_main_usage(capsys):
    assert soldec.main(['soldec.py']) == 2
    assert soldec.main(['soldec.py', 'x.bin', '12']) == 2
    assert 'usage' in capsys.readouterr().err


def test_main_reports_decode_error(script, capsys):
    path = script('c2  70 01 00 12 80')
    assert soldec.main(['soldec.py', path, '0x0']) == 1
    out, err = capsys.readouterr()
    assert out == '1\n'
    assert err.startswith('TruncatedStream: opcode 0x12 truncated')
    assert '  in opcode 0x12 at 0x4\n' in err
    assert '  in opcode 0x70 at 0x1\n' in err


def test_main_reports_unreadable_file(tmp_path, capsys):
    path = str(tmp_path / 'missing.bin')
    assert soldec.main(['soldec.py', path, '0x0']) == 1
    assert soldec_dump.main(['soldec_dump.py', path, '0x0']) == 1
    out, err = capsys.readouterr()
    assert out == ''
    assert err.count('missing.bin') == 2


def test_dump_lines_carry_span_and_hash():
    data = bytes.fromhex('ee  c2  70 01 00 41 00  00')
    f = StringIO()
    assert soldec_dump.dump(data, 1, f) == 2
    lines = f.getvalue().splitlines()
    assert len(lines) == 4
    h0 = murmurhash2(data[1:2], 0) & 0xFFFFFFFF
    h1 = murmurhash2(data[2:7], 0) & 0xFFFFFFFF
    assert lines[0] == f'[0x1+1] mmh2={h0:0>8x} Constant (Constant:i32:0x1)'
    assert lines[1] == '1'
    assert lines[2] == f'[0x2+5] mmh2={h1:0>8x} Call (Call:0x1[(Parameter:0x1)])'
    assert lines[3] == 'func_0x1(p0)'


def test_dump_seed_changes_hash():
    data = bytes.fromhex('c2 00')
    a, b = StringIO(), StringIO()
    soldec_dump.dump(data, 0, a)
    soldec_dump.dump(data, 0, b, seed=1)
    pat = re.compile(r'mmh2=([0-9a-f]{8})')
    assert pat.search(a.getvalue()).group(1) != pat.search(b.getvalue()).group(1)


def test_dump_main(script, capsys):
    path = script('80 c2 00')
    assert soldec_dump.main(['soldec_dump.py', path, '0x0']) == 0
    out = capsys.readouterr().out
    assert out.startswith('[0x0+3] mmh2=')
    assert out.endswith('{\n\t1\n}\n')


def test_dump_main_reports_decode_error(script, capsys):
    path = script('07 41')
    assert soldec_dump.main(['soldec_dump.py', path, '0x0']) == 1
    assert capsys.readouterr().err.startswith('UnsupportedEncoding:')
