#!/bin/env python3
from __future__ import annotations
from io import BytesIO
from enum import IntEnum
from typing import BinaryIO, ClassVar, Iterable, Iterator
LE = 'little'
BE = 'big'


class DecodeError(Exception):
    addr: int | None
    code: int | None

    def __init__(self, msg: str, addr: int | None = None, code: int | None = None):
        super().__init__(msg)
        self.addr = addr
        self.code = code


class EndOfStream(DecodeError):
    pass


class TruncatedStream(DecodeError):
    pass


class UnsupportedEncoding(DecodeError):
    pass


class UnrecognizedCode(DecodeError):
    pass


class StructuralViolation(DecodeError):
    pass


class Rdr:
    __slots__ = ['f', 'pos']
    f: BinaryIO
    pos: int

    def __init__(self, f: BinaryIO, pos: int | None = None):
        self.f = f
        self.pos = f.tell() if pos is None else pos

    def next(self) -> int | None:
        if not (b := self.f.read(1)):
            return None
        self.pos += 1
        return b[0]

    def byte(self) -> int:
        if (b := self.next()) is None:
            raise EndOfStream(f'read: want=1, got=0, at={self.pos}', self.pos)
        return b

    def read(self, n: int):
        beg = self.pos
        ret = self.f.read(n)
        self.pos += (got := len(ret))
        if got != n:
            raise EndOfStream(f'read: want={n}, got={got}, at={beg}', beg)
        return ret

    def skip(self, n: int):
        self.read(n)

    def ui(self, n: int):
        return int.from_bytes(self.read(n), LE, signed=False)

    def si(self, n: int):
        return int.from_bytes(self.read(n), LE, signed=True)

    def ube(self, n: int):
        return int.from_bytes(self.read(n), BE, signed=False)


class Kind(IntEnum):
    Invalid = 0
    Constant = 1
    Memory = 2
    MemoryIndexed = 3
    Expression = 4
    Parameter = 5
    Keyword = 6
    Control = 7
    Call = 8
    Block = 9
    Variable = 10
    Operator = 11
    End = 12


class DataType(IntEnum):
    Void = 0
    Bool = 1
    UInt8 = 2
    Int16 = 3
    UInt16 = 4
    UInt24 = 5
    Int32 = 6


class Ctrl(IntEnum):
    If = 0xD86
    Switch = 0x4A6F
    Return = 0xCD3A
    B745 = 0xB745


class Kw(IntEnum):
    Case = 0x63
    Default = 0x64
    Else = 0x65
    ElseIf = 0x69
    K6D = 0x6D


TypShort = ['void', 'b', 'u8', 'i16', 'u16', 'u24', 'i32']


class Ins:
    __slots__ = ['addr', 'val', 'kids']
    kind: ClassVar[Kind] = Kind.Invalid
    valued: ClassVar[bool] = True
    typ: DataType = DataType.Void
    addr: int
    val: int
    kids: tuple[Ins, ...]

    def __init__(self, addr: int = 0, val: int = 0, kids: Iterable[Ins] = ()):
        self.addr = addr
        self.val = val
        self.kids = tuple(kids)

    def is_end(self):
        return False

    def is_expr_end(self):
        return False

    def __eq__(self, o: object):
        if type(o) is not type(self):
            return NotImplemented
        assert isinstance(o, Ins)
        return (self.addr, self.val, self.typ, self.kids) == (o.addr, o.val, o.typ, o.kids)

    __hash__ = None  # type: ignore

    def __repr__(self):
        s = self.kind.name
        if self.typ:
            s += ':'+TypShort[self.typ]
        if self.valued:
            s += f':{hex(self.val)}'
        if self.kids:
            s += '['+', '.join(map(repr, self.kids))+']'
        return f'({s})'


class Invalid(Ins):
    __slots__ = ()
    valued = False

    def is_end(self):
        return True


class End(Ins):
    __slots__ = ()
    kind = Kind.End
    valued = False

    def is_end(self):
        return True


class Const(Ins):
    __slots__ = ['typ']
    __match_args__ = ('typ', 'val')
    kind = Kind.Constant

    def __init__(self, typ: DataType, val: int, addr: int = 0):
        super().__init__(addr, val)
        self.typ = typ


class Mem(Ins):
    __slots__ = ['typ']
    __match_args__ = ('typ', 'val')
    kind = Kind.Memory

    def __init__(self, typ: DataType, val: int, addr: int = 0):
        super().__init__(addr, val)
        self.typ = typ


class MemIdx(Ins):
    """kids[0] is a placeholder, kids[1] is the runtime index"""
    __slots__ = ['typ']
    __match_args__ = ('typ', 'val', 'kids')
    kind = Kind.MemoryIndexed

    def __init__(self, typ: DataType, val: int, kids: Iterable[Ins], addr: int = 0):
        super().__init__(addr, val, kids)
        self.typ = typ


class Expr(Ins):
    __slots__ = ()
    __match_args__ = ('kids',)
    kind = Kind.Expression
    valued = False

    def __init__(self, kids: Iterable[Ins], addr: int = 0):
        super().__init__(addr, 0, kids)


class Block(Ins):
    __slots__ = ()
    __match_args__ = ('kids',)
    kind = Kind.Block
    valued = False

    def __init__(self, kids: Iterable[Ins], addr: int = 0):
        super().__init__(addr, 0, kids)


class Param(Ins):
    __slots__ = ()
    __match_args__ = ('val',)
    kind = Kind.Parameter

    def __init__(self, val: int, addr: int = 0):
        super().__init__(addr, val)


class Var(Ins):
    __slots__ = ()
    __match_args__ = ('val',)
    kind = Kind.Variable

    def __init__(self, val: int, addr: int = 0):
        super().__init__(addr, val)


class Op(Ins):
    __slots__ = ()
    __match_args__ = ('val',)
    kind = Kind.Operator

    def __init__(self, val: int, addr: int = 0):
        super().__init__(addr, val)

    def is_expr_end(self):
        return self.val == 0


class Keyword(Ins):
    __slots__ = ()
    __match_args__ = ('val', 'kids')
    kind = Kind.Keyword

    def __init__(self, val: int, kids: Iterable[Ins], addr: int = 0):
        super().__init__(addr, val, kids)


class Control(Ins):
    __slots__ = ()
    __match_args__ = ('val', 'kids')
    kind = Kind.Control

    def __init__(self, val: int, kids: Iterable[Ins], addr: int = 0):
        super().__init__(addr, val, kids)


class Call(Ins):
    __slots__ = ()
    __match_args__ = ('val', 'kids')
    kind = Kind.Call

    def __init__(self, val: int, kids: Iterable[Ins], addr: int = 0):
        super().__init__(addr, val, kids)


# opcode 0x01..0x0F: (type, width, signed)
ConstFmt: dict[int, tuple[DataType, int, bool]] = {
    0x1: (DataType.Int16, 2, True),
    0x2: (DataType.UInt8, 1, False),
    0x3: (DataType.UInt8, 1, False),
    0x4: (DataType.UInt8, 1, False),
    0x6: (DataType.UInt16, 2, False),
    0x8: (DataType.UInt16, 2, False),
    0x9: (DataType.Int32, 4, True),
    0xA: (DataType.Int32, 4, True),
    0xD: (DataType.Int32, 4, True),
}
ConstUnsupported = {0x7, 0xE}  # string, byte array
MemBanks = {0x80: 0x0203D800, 0x10: 0x0203F000}
MemBankDefault = 0x0203E800
MemTyp: dict[int, DataType] = {
    0x1: DataType.Int16,
    0x6: DataType.Int16,
    0x2: DataType.UInt8,
    0x3: DataType.UInt8,
    0x4: DataType.Bool,
    0x8: DataType.UInt24,
    0x9: DataType.Int32,
}
KwArity = {Kw.Else: 1, Kw.ElseIf: 2, Kw.K6D: 1}


def decode_one(r: Rdr) -> Ins:
    addr = r.pos
    if (cmd := r.next()) is None:
        return Invalid(addr)
    where = f'in opcode 0x{cmd:02X} at 0x{addr:X}'
    try:
        return _decode(r, cmd, addr)
    except EndOfStream as x:
        e = TruncatedStream(f'opcode 0x{cmd:02X} truncated, {x}', x.addr, cmd)
        e.add_note(where)
        raise e from x
    except DecodeError as x:
        x.add_note(where)
        raise


def decode_block(r: Rdr) -> Block:
    addr = r.pos
    return Block(_until_end(r), addr)


def _decode(r: Rdr, cmd: int, addr: int) -> Ins:
    match cmd & 0xF0:
        case 0x00 | 0xC0 | 0xD0 | 0xE0 | 0xF0:
            return _constant(r, cmd, addr)
        case 0x10 | 0x20:
            return _memory(r, cmd, addr)
        case 0x30:
            _skip_script_offset(r, cmd)
            return Expr(_until_expr_end(r), addr)
        case 0x40:
            if (i := cmd & 0xF) == 0xF:
                i += r.byte()
            return Param(i, addr)
        case 0x50:
            _skip_script_offset(r, cmd)
            return _keyword(r, addr)
        case 0x60:
            _skip_script_offset(r, cmd)
            return _control(r, addr)
        case 0x70:
            _skip_script_offset(r, cmd)
            return Call(r.ui(2), _until_end(r), addr)
        case 0x80:
            _skip_script_offset(r, cmd)
            return Block(_until_end(r), addr)
        case 0x90:
            return Var(cmd & 0xF, addr)
        case _:  # 0xA0, 0xB0
            return Op(cmd & 0x1F, addr)


def _until_end(r: Rdr):
    kids: list[Ins] = []
    while not (k := decode_one(r)).is_end():
        kids.append(k)
    return kids


def _need(r: Rdr):
    # fixed-arity child, EOF here is truncation not a terminal
    if isinstance(k := decode_one(r), Invalid):
        raise EndOfStream(f'missing child, at={k.addr}', k.addr)
    return k


def _until_expr_end(r: Rdr):
    kids: list[Ins] = []
    while not (k := decode_one(r)).is_expr_end():
        if isinstance(k, Invalid):
            raise EndOfStream(f'expression: no terminator, at={k.addr}', k.addr)
        kids.append(k)
    return kids


def _skip_script_offset(r: Rdr, cmd: int):
    # branch target of the flat VM stream, the tree nests blocks instead
    if (n := cmd & 0xF) > 0xC:
        r.skip(n - 0xC)


def _constant(r: Rdr, cmd: int, addr: int) -> Ins:
    if cmd & 0xF0:
        return Const(DataType.Int32, (cmd & 0x3F) - 1, addr)
    match cmd:
        case 0:
            return End(addr)
        case c if c in ConstUnsupported:
            raise UnsupportedEncoding(f'constant 0x{c:02X}: string/byte array, at={addr}', addr, c)
        case c if c in ConstFmt:
            typ, n, signed = ConstFmt[c]
            return Const(typ, r.si(n) if signed else r.ui(n), addr)
        case c:
            raise UnrecognizedCode(f'unknown constant 0x{c:02X}, at={addr}', addr, c)


def _memory(r: Rdr, cmd: int, addr: int) -> Ins:
    base = MemBanks.get(r.byte() & 0xF0, MemBankDefault)
    val = base + r.ube(2)  # big-endian, unlike every other field
    typ = MemTyp.get(cmd & 0xF, DataType.Void)
    if cmd & 0xF0 == 0x20:
        return MemIdx(typ, val, (_need(r), _need(r)), addr)
    return Mem(typ, val, addr)


def _keyword(r: Rdr, addr: int) -> Ins:
    kw = r.byte()
    if (n := KwArity.get(kw)) is None:
        raise UnrecognizedCode(f'unknown keyword 0x{kw:X}, at={addr}', addr, kw)
    return Keyword(kw, [_need(r) for _ in range(n)], addr)


def _control(r: Rdr, addr: int) -> Ins:
    tag = r.ui(2)
    if r.byte() & 0x80:
        r.skip(1)
    match tag:
        case Ctrl.If:
            kids = [_need(r), _need(r)]
            kids.extend(_until_end(r))  # else/elseif chain
        case Ctrl.Return:
            kids = [_need(r)]
        case Ctrl.B745:
            kids = [_need(r)]
            for k in _until_end(r):
                if isinstance(k, Keyword) and k.val == Kw.K6D:
                    kids.append(k.kids[0])
        case _:
            raise UnrecognizedCode(f'unknown control 0x{tag:X}, at={addr}', addr, tag)
    return Control(tag, kids, addr)


def iter_top(r: Rdr, *, stop_after_block: bool = True) -> Iterator[Ins]:
    while not (ins := decode_one(r)).is_end():
        yield ins
        if stop_after_block and isinstance(ins, Block):
            return


def parse_buf(b: bytes, off: int = 0, *, stop_after_block: bool = True):
    f = BytesIO(b)
    f.seek(off)
    return list(iter_top(Rdr(f), stop_after_block=stop_after_block))


__all__ = [
    'DecodeError', 'EndOfStream', 'TruncatedStream', 'UnsupportedEncoding',
    'UnrecognizedCode', 'StructuralViolation',
    'Rdr', 'Kind', 'DataType', 'Ctrl', 'Kw',
    'Ins', 'Invalid', 'End', 'Const', 'Mem', 'MemIdx', 'Expr', 'Block',
    'Param', 'Var', 'Op', 'Keyword', 'Control', 'Call',
    'MemBanks', 'MemBankDefault', 'decode_one', 'decode_block', 'iter_top', 'parse_buf',
]
