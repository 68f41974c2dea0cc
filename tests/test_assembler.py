#!/usr/bin/env python3

from typing import Type

import bitcointx.core.script as bscript
from bitcointx.core.script import CScript

import bsasm

Op = bsasm.Operation


def expect_failure(text: str, exc_type: Type[bsasm.AssemblyError]
                   ) -> bsasm.AssemblyError:
    try:
        bsasm.assemble(text)
    except exc_type as e:
        return e

    assert 0, f"assembling {text!r} must fail with {exc_type.__name__}"


def test_empty() -> None:
    for text in ('', ' ', '\n\t  '):
        script = bsasm.assemble(text)
        assert len(script) == 0
        assert script.serialize() == b''


def test_small_integers() -> None:
    script = bsasm.assemble('5')
    assert list(script) == [Op(bsasm.OP_5)]
    assert script[0].data == b''
    assert script.serialize() == b'\x55'

    for n in range(1, 17):
        script = bsasm.assemble(str(n))
        assert list(script) == [Op(bsasm.small_int_opcode(n))]
        assert script.serialize() == bytes(CScript([n]))


def test_integers() -> None:
    for v in (0, 17, -2, -16, 100, 1000, -1000, 127, 128, -128, 255, -255,
              2**31, -2**31, bsasm.MAX_INT64, bsasm.MIN_INT64):
        script = bsasm.assemble(str(v))
        assert len(script) == 1
        assert script[0].is_push()
        assert bsasm.scriptnum_to_integer(script[0].data) == v
        assert script.serialize() == bytes(CScript([v])), v

    assert list(bsasm.assemble('0')) == [Op(bsasm.OP_0)]
    assert list(bsasm.assemble('-0')) == [Op(bsasm.OP_0)]
    assert list(bsasm.assemble('007')) == [Op(bsasm.OP_7)]
    assert list(bsasm.assemble('17')) == [Op(1, b'\x11')]


def test_unimplemented_literal() -> None:
    e = expect_failure('-1', bsasm.UnimplementedLiteralError)
    assert e.token == '-1'
    assert bsasm.is_small_literal(-1)

    expect_failure('1 -1 ADD', bsasm.UnimplementedLiteralError)

    # the opcode itself can still be used by name
    assert bsasm.assemble('1NEGATE').serialize() == b'\x4f'


def test_number_out_of_range() -> None:
    e = expect_failure(str(bsasm.MAX_INT64 + 1), bsasm.UnrecognizedTokenError)
    assert e.token == str(bsasm.MAX_INT64 + 1)
    expect_failure(str(bsasm.MIN_INT64 - 1), bsasm.UnrecognizedTokenError)

    e = expect_failure('1'*5000, bsasm.UnrecognizedTokenError)
    assert e.token == '1'*5000
    expect_failure('-' + '9'*5000, bsasm.UnrecognizedTokenError)


def test_quoted_strings() -> None:
    script = bsasm.assemble("'ab'")
    assert len(script) == 1
    assert script[0].code == 2
    assert script[0].data == b'\x61\x62'
    assert script.serialize() == b'\x02ab'

    assert list(bsasm.assemble("''")) == [Op(bsasm.OP_0)]
    assert list(bsasm.assemble("'a'b'")) == [Op(3, b"a'b")]
    assert list(bsasm.assemble("'é'")) == [Op(2, b'\xc3\xa9')]
    assert list(bsasm.assemble("'\udcff'")) == [Op(1, b'\xff')]

    expect_failure("'", bsasm.UnrecognizedTokenError)
    expect_failure("'abc", bsasm.UnrecognizedTokenError)


def test_pushdata_brackets() -> None:
    for size, code in ((1, 1), (75, 75),
                       (76, bsasm.OP_PUSHDATA1.code),
                       (255, bsasm.OP_PUSHDATA1.code),
                       (256, bsasm.OP_PUSHDATA2.code),
                       (65535, bsasm.OP_PUSHDATA2.code),
                       (65536, bsasm.OP_PUSHDATA4.code)):
        payload = b'a'*size
        script = bsasm.assemble(f"'{payload.decode('ascii')}'")
        assert len(script) == 1
        assert script[0].code == code, (size, script[0].code)
        assert script[0].data == payload
        assert script.serialize() == bytes(CScript([payload])), size

    assert bsasm.pushdata_opcode_for_size(0) == bsasm.OP_0.code
    assert bsasm.pushdata_opcode_for_size(0xffffffff) == bsasm.OP_PUSHDATA4.code

    try:
        bsasm.pushdata_opcode_for_size(0x100000000)
    except bsasm.OversizedPayloadError:
        pass
    else:
        assert 0, "payload above 4 GiB must be rejected"


def test_opcodes() -> None:
    for text in ('dup', 'DUP', 'Dup', 'OP_DUP', 'op_dup', 'Op_Dup'):
        assert list(bsasm.assemble(text)) == [Op(bsasm.OP_DUP)]

    assert bsasm.assemble('NOP2').serialize() == b'\xb1'
    assert bsasm.assemble('CHECKLOCKTIMEVERIFY').serialize() == b'\xb1'
    assert bsasm.assemble('true false').serialize() == b'\x51\x00'
    assert bsasm.assemble('pushdata1').serialize() == b'\x4c\x00'

    assert bsasm.OPCODE_TABLE['DUP'] is bsasm.OP_DUP
    assert bsasm.OPCODE_BY_CODE[0x76] is bsasm.OP_DUP

    try:
        bsasm.OPCODE_TABLE['FOO'] = bsasm.OP_DUP  # type: ignore
    except TypeError:
        pass
    else:
        assert 0, "opcode table must be read-only"


def test_unrecognized_token() -> None:
    e = expect_failure('???', bsasm.UnrecognizedTokenError)
    assert e.token == '???'
    assert '???' in str(e)

    e = expect_failure('DUP FOO 1', bsasm.UnrecognizedTokenError)
    assert e.token == 'FOO'

    for text in ('-', '0X51', 'x51', '1.5', '0xzz', '²'):
        e = expect_failure(text, bsasm.UnrecognizedTokenError)
        assert e.token == text


def test_hex_folding() -> None:
    # nested script, not two data pushes
    script = bsasm.assemble('0x00 0x51')
    assert script == bsasm.Script.from_bytes(b'\x00\x51')
    assert list(script) == [Op(bsasm.OP_0), Op(bsasm.OP_1)]

    # data push split across several fragments
    script = bsasm.assemble('0x02 0xabcd ADD')
    assert list(script) == [Op(2, b'\xab\xcd'), Op(bsasm.OP_ADD)]

    # order of the input is preserved around the flush
    script = bsasm.assemble('0x51 DUP')
    assert list(script) == [Op(bsasm.OP_1), Op(bsasm.OP_DUP)]

    # trailing fragments are not dropped
    script = bsasm.assemble('DUP 0x51')
    assert list(script) == [Op(bsasm.OP_DUP), Op(bsasm.OP_1)]

    script = bsasm.assemble('0x51 DUP 0x4c01ff 2')
    assert list(script) == [Op(bsasm.OP_1), Op(bsasm.OP_DUP),
                            Op(bsasm.OP_PUSHDATA1, b'\xff'), Op(bsasm.OP_2)]
    assert script.serialize() == bytes.fromhex('51764c01ff52')

    assert len(bsasm.assemble('0x')) == 0
    assert bsasm.assemble('0xABcd').serialize() == b'\xab\xcd'


def test_hex_decoding_failures() -> None:
    e = expect_failure('0x123', bsasm.UnrecognizedTokenError)
    assert e.token == '0x123'

    # same outcome as decoding the bytes directly
    try:
        bsasm.Script.from_bytes(b'\x00\x01')
    except bsasm.ScriptDecodingError as sde:
        assert sde.offset == 1
    else:
        assert 0, "truncated push must not decode"

    e = expect_failure('0x00 0x01', bsasm.NestedScriptError)
    assert e.token == '0x00 0x01'
    assert isinstance(e, bsasm.NestedScriptError)
    assert e.offset == 1

    e = expect_failure('0x4c', bsasm.NestedScriptError)
    assert isinstance(e, bsasm.NestedScriptError)
    assert e.offset == 0

    e = expect_failure('1 0x51 0x4d0100 DUP', bsasm.NestedScriptError)
    assert e.token == '0x51 0x4d0100'
    assert isinstance(e, bsasm.NestedScriptError)
    assert e.offset == 1


def test_assembler_state_is_per_call() -> None:
    asm = bsasm.ScriptAssembler()

    try:
        asm.assemble('0x51 ???')
    except bsasm.UnrecognizedTokenError:
        pass
    else:
        assert 0, "must fail"

    assert list(asm.assemble('DUP')) == [Op(bsasm.OP_DUP)]

    try:
        asm.assemble('0x02ab DUP')
    except bsasm.NestedScriptError:
        pass
    else:
        assert 0, "must fail"

    assert list(asm.assemble('DUP')) == [Op(bsasm.OP_DUP)]

    first = asm.assemble('1 2')
    second = asm.assemble('3')
    assert list(first) == [Op(bsasm.OP_1), Op(bsasm.OP_2)]
    assert list(second) == [Op(bsasm.OP_3)]


def test_against_bitcointx() -> None:
    pkh = bytes(range(20))
    script = bsasm.assemble(
        f'DUP HASH160 0x14 0x{pkh.hex()} EQUALVERIFY CHECKSIG')
    assert script.serialize() == bytes(CScript([
        bscript.OP_DUP, bscript.OP_HASH160, pkh,
        bscript.OP_EQUALVERIFY, bscript.OP_CHECKSIG]))

    script = bsasm.assemble(
        f"2 'abc' 1000 -1000 'x' IF 0x{'00'*3} ENDIF 'yy' 16 CHECKMULTISIG")
    assert script.serialize() == bytes(CScript([
        2, b'abc', 1000, -1000, b'x', bscript.OP_IF,
        bscript.OP_0, bscript.OP_0, bscript.OP_0, bscript.OP_ENDIF,
        b'yy', 16, bscript.OP_CHECKMULTISIG]))


def test_script_roundtrip() -> None:
    script = bsasm.Script([
        Op(bsasm.OP_0), Op(3, b'abc'),
        Op(bsasm.OP_PUSHDATA1, b'\x01'),
        Op(bsasm.OP_PUSHDATA2, b'q'*300),
        Op(bsasm.OP_PUSHDATA4, b''),
        Op(bsasm.OP_CHECKSIG), Op(0xfe)])
    assert bsasm.Script.from_bytes(script.serialize()) == script

    joined = bsasm.Script([Op(bsasm.OP_1)])
    joined.extend(script)
    assert len(joined) == len(script) + 1
    assert joined.serialize() == b'\x51' + script.serialize()


def test_operation_checks() -> None:
    for code, data in ((2, b'a'), (0, b'a'), (bsasm.OP_DUP, b'a'),
                       (bsasm.OP_PUSHDATA1, b'a'*256), (256, b'')):
        try:
            Op(code, data)
        except ValueError:
            pass
        else:
            assert 0, (code, data)


def test_script_str() -> None:
    script = bsasm.assemble("'ab' DUP 0 16 0xba")
    assert str(script) == "x('6162') DUP 0 16 CHECKSIGADD"
    assert str(bsasm.Script([Op(0xfe)])) == '0xfe'


if __name__ == '__main__':
    test_empty()
    test_small_integers()
    test_integers()
    test_unimplemented_literal()
    test_number_out_of_range()
    test_quoted_strings()
    test_pushdata_brackets()
    test_opcodes()
    test_unrecognized_token()
    test_hex_folding()
    test_hex_decoding_failures()
    test_assembler_state_is_per_call()
    test_against_bitcointx()
    test_script_roundtrip()
    test_operation_checks()
    test_script_str()
