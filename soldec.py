#!/bin/env python3
import sys
from typing import TextIO
from soldeclib import *


def parse_off(s: str) -> int | None:
    if not s.lower().startswith('0x'):
        return None
    try:
        return int(s, 16)
    except ValueError:
        return None


def report(x: DecodeError, f: TextIO):
    f.write(f'{type(x).__name__}: {x}\n')
    for note in getattr(x, '__notes__', ()):
        f.write(f'  {note}\n')


def main(argv: list[str]) -> int:
    match argv[1:]:
        case [fin, off] if (pos := parse_off(off)) is not None: pass
        case _:
            print(f'usage: {argv[0]} FILE 0xOFFSET', file=sys.stderr)
            return 2
    try:
        with open(fin, 'rb') as fp:
            fp.seek(pos)
            decompile(Rdr(fp), sys.stdout)
    except DecodeError as x:
        sys.stdout.flush()
        report(x, sys.stderr)
        return 1
    except OSError as x:
        print(f'{argv[0]}: {x}', file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv))
