from typing import Sequence, TextIO
from .fileformat import *
TypName = ['void', 'bool', 'uint8_t', 'int16_t', 'uint16_t', 'uint24_t', 'int32_t']
OpStr = [
    ';', '-', '!', '~', '+', '-', '*', '/',
    '%', '<<', '>>', '==', '!=', '<', '<=', '>',
    '>=', '|', '&', '^', '||', '&&', '=', '',
]
# lower binds tighter
OpPrec = [
    0, 2, 2, 2, 4, 4, 3, 3,
    3, 5, 5, 7, 7, 6, 6, 6,
    6, 10, 8, 9, 12, 11, 14, 16,
]
OpUnary = {1, 2, 3, 23}
OpAssign = 22
ElseKw = {Kw.Else, Kw.ElseIf}


def render(ins: Ins, indent: int = 0) -> str:
    sub = indent + 1
    match ins:
        case Invalid(): return '?'
        case End(): return '}'
        case Const(_, v): return str(v)
        case Mem(DataType.Bool, v): return f'BIT({_bit(v)})'
        case Mem(typ, v): return f'*(({TypName[typ]} *)0x{v:X})'
        case MemIdx(DataType.Bool, v): return f'BIT({_bit(v)}, {render(_kid(ins, 1), sub)})'
        case MemIdx(typ, v): return f'(({TypName[typ]} *)0x{v:X})[{render(_kid(ins, 1), sub)}]'
        case Expr(): return _expr(ins, indent)
        case Param(0): return 'r'
        case Param(v): return f'p{v - 1}'
        case Var(v): return f'v{v}'
        case Op(): return _op(ins)[0]
        case Keyword(): return _keyword(ins, indent)
        case Control(): return _control(ins, indent)
        case Call(v, kids): return f'func_0x{v:X}({_params(kids, sub)})'
        case Block(kids):
            return '{\n' + '\t'*sub + _stmts(kids, indent, sub) + '\n' + '\t'*indent + '}'
        case _: raise UnrecognizedCode(f'cannot render {ins!r}, at={ins.addr}', ins.addr)


def _bit(v: int):
    return f'0x{v // 8:08X}, {v % 8}'


def _hex(v: int):
    return f'0x{v & 0xFFFFFFFF:X}'


def _kid(ins: Ins, i: int):
    if i < len(ins.kids):
        return ins.kids[i]
    raise StructuralViolation(
        f'{ins.kind.name}: want child #{i}, has {len(ins.kids)}, at={ins.addr}', ins.addr, ins.val)


def _op(ins: Ins):
    if not 0 <= (v := ins.val) < len(OpStr):
        raise UnrecognizedCode(f'unknown operator {v}, at={ins.addr}', ins.addr, v)
    return OpStr[v], OpPrec[v]


def _pop(stk: list[tuple[str, int]], op: Ins, prec: int):
    if not stk:
        raise StructuralViolation(f'operator {op.val}: operand stack empty, at={op.addr}', op.addr, op.val)
    s, p = stk.pop()
    return f'({s})' if p > prec else s


def _expr(ins: Ins, indent: int):
    sub = indent + 1
    stk: list[tuple[str, int]] = []  # (text, precedence)
    for k in ins.kids:
        match k:
            case Op(0): break
            case Op(v):
                op, prec = _op(k)
                b = _pop(stk, k, prec)
                if v in OpUnary:
                    stk.append((op + b, prec))
                else:
                    a = _pop(stk, k, prec)
                    stk.append((f'{a} {op} {b}', prec))
            case Block((one,)):
                stk.append((render(one, sub), 0))
            case _:
                stk.append((render(k, sub), 0))
    if len(stk) != 1:
        raise StructuralViolation(
            f'expression: {len(stk)} operands left, at={ins.addr}', ins.addr)
    return stk[0][0]


def _params(kids: Sequence[Ins], sub: int):
    return ', '.join(render(k, sub) for k in kids)


def _stmts(kids: Sequence[Ins], indent: int, sub: int):
    nl = '\n' + '\t'*(indent + 1)
    s: list[str] = []
    for i, k in enumerate(kids):
        if isinstance(k, Keyword) and k.val in ElseKw:
            s.append(' ')  # if (...) {...} else {...}
        elif i:
            s.append(nl)
        s.append(render(k, sub))
        if isinstance(k, Expr):
            s.append(';')
    return ''.join(s)


def _keyword(ins: Ins, indent: int):
    match ins.val:
        case Kw.Case:
            return f'case {render(_kid(ins, 0), indent)}:\n{_stmts(ins.kids[1:], indent, indent)}break;'
        case Kw.Default:
            return f'default:\n{_stmts(ins.kids, indent, indent)}break;'
        case Kw.Else:
            return 'else ' + render(_kid(ins, 0), indent)
        case Kw.ElseIf:
            return f'else if ({render(_kid(ins, 0), indent)}) {render(_kid(ins, 1), indent)}'
        case v:
            raise UnrecognizedCode(f'keyword 0x{v:X} has no text form, at={ins.addr}', ins.addr, v)


def _control(ins: Ins, indent: int):
    match ins.val:
        case Ctrl.If:
            _kid(ins, 1)
            return f'if ({render(ins.kids[0], indent)}) {_stmts(ins.kids[1:], indent, indent)}'
        case Ctrl.Return:
            return f'return {render(_kid(ins, 0), indent)};'
        case Ctrl.B745:
            sel = _kid(ins, 0)
            s = _hex(sel.val) if isinstance(sel, Const) else render(sel, indent)
            return f'ctrl_0x{ins.val:X}[{s}]({_params(ins.kids[1:], indent)})'
        case v:
            raise UnrecognizedCode(f'control 0x{v:X} has no text form, at={ins.addr}', ins.addr, v)


def decompile(r: Rdr, f: TextIO, *, stop_after_block: bool = True) -> int:
    n = 0
    for ins in iter_top(r, stop_after_block=stop_after_block):
        f.write(render(ins)+'\n')
        n += 1
    return n


__all__ = ['TypName', 'OpStr', 'OpPrec', 'render', 'decompile']
