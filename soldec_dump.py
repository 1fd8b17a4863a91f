#!/bin/env python3
import sys
from io import BytesIO
from typing import TextIO
from murmurhash2 import murmurhash2 as _mmh2
from soldeclib import *
from soldec import parse_off, report


def dump(data: bytes, off: int, f: TextIO, *, seed: int = 0) -> int:
    # hash each top-level span, so two builds can be diffed node by node
    fp = BytesIO(data)
    fp.seek(off)
    r = Rdr(fp)
    n = 0
    for ins in iter_top(r):
        beg, end = ins.addr, r.pos
        h = _mmh2(data[beg:end], seed) & 0xFFFFFFFF
        f.write(f'[0x{beg:X}+{end-beg}] mmh2={h:0>8x} {ins.kind.name} {ins!r}\n')
        f.write(render(ins)+'\n')
        n += 1
    return n


def main(argv: list[str]) -> int:
    match argv[1:]:
        case [fin, off] if (pos := parse_off(off)) is not None: pass
        case _:
            print(f'usage: {argv[0]} FILE 0xOFFSET', file=sys.stderr)
            return 2
    try:
        with open(fin, 'rb') as fp:
            data = fp.read()
    except OSError as x:
        print(f'{argv[0]}: {x}', file=sys.stderr)
        return 1
    try:
        dump(data, pos, sys.stdout)
    except DecodeError as x:
        sys.stdout.flush()
        report(x, sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv))
