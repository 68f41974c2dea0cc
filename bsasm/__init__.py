#!/usr/bin/env python3
# This program is released under Prosperity Public License 3.0.0
# The text of the license follows:
"""
# The Prosperity Public License 3.0.0

Contributor: Dmitry Petukhov (https://github.com/dgpv), dp@bsst.dev

Source Code: https://github.com/dgpv/bsst

## Purpose

This license allows you to use and share this software for noncommercial
purposes for free and to try this software for commercial purposes for thirty
days.

## Agreement

In order to receive this license, you have to agree to its rules.
Those rules are both obligations under that agreement and conditions to your
license.  Don't do anything with this software that triggers a rule you can't
or won't follow.

## Notices

Make sure everyone who gets a copy of any part of this software from you, with
or without changes, also gets the text of this license and the contributor and
source code lines above.

## Commercial Trial

Limit your use of this software for commercial purposes to a thirty-day trial
period.  If you use this software for work, your company gets one trial period
for all personnel, not one trial per person.

## Contributions Back

Developing feedback, changes, or additions that you contribute back to the
contributor on the terms of a standardized public software license such as
[the Blue Oak Model License 1.0.0](https://blueoakcouncil.org/license/1.0.0),
[the Apache License 2.0](https://www.apache.org/licenses/LICENSE-2.0.html),
[the MIT license](https://spdx.org/licenses/MIT.html), or
[the two-clause BSD license](https://spdx.org/licenses/BSD-2-Clause.html)
doesn't count as use for a commercial purpose.

## Personal Uses

Personal use for research, experiment, and testing for the benefit of public
knowledge, personal study, private entertainment, hobby projects, amateur
pursuits, or religious observance, without any anticipated commercial
application, doesn't count as use for a commercial purpose.

## Noncommercial Organizations

Use by any charitable organization, educational institution, public research
organization, public safety or health organization, environmental protection
organization, or government institution doesn't count as use for a commercial
purpose regardless of the source of funding or obligations resulting from the
funding.

## Defense

Don't make any legal claim against anyone accusing this software, with or
without changes, alone or with other technology, of infringing any patent.

## Copyright

The contributor licenses you to do everything with this software that would
otherwise infringe their copyright in it.

## Patent

The contributor licenses you to do everything with this software that would
otherwise infringe any patents they can license or become able to license.

## Reliability

The contributor can't revoke this license.

## Excuse

You're excused for unknowingly breaking [Notices](#notices) if you take all
practical steps to comply within thirty days of learning you broke the rule.

## No Liability

AS FAR AS THE LAW ALLOWS, THIS SOFTWARE COMES AS IS, WITHOUT ANY WARRANTY
OR CONDITION, AND THE CONTRIBUTOR WON'T BE LIABLE TO ANYONE FOR ANY DAMAGES
RELATED TO THIS SOFTWARE OR THIS LICENSE, UNDER ANY KIND OF LEGAL CLAIM.
"""

# pylama:ignore=E501,E272

import os
import re
import sys
import enum
import types
import struct

from io import BytesIO
from contextlib import contextmanager

from typing import (
    Optional, Union, Iterable, Iterator, Sequence, Generator, Protocol,
    BinaryIO, Any
)

from bitcointx.core import (
    CTransaction, CTxIn, CTxOut, COutPoint, ValidationError
)
from bitcointx.core.script import CScript, CScriptInvalidError
from bitcointx.core.scripteval import VerifyScript, SCRIPT_VERIFY_P2SH
from bitcointx.core.serialize import ser_read, SerializationTruncationError

HASH_SIZE = 32
NULL_HASH = b'\x00'*HASH_SIZE

MAX_UINT32 = 0xffffffff

# x mod 2**63 == x & (2**63 - 1)
CHECKSUM_DIVISOR = 1 << 63

MAX_PUSHDATA_SIZE = 0xffffffff

MIN_INT64 = -(1 << 63)
MAX_INT64 = (1 << 63) - 1

ByteSource = Union[bytes, bytearray, memoryview, BinaryIO]


class BSASMError(Exception):
    ...


class TruncatedInputError(BSASMError):

    def __init__(self, msg: str, *, offset: int) -> None:
        super().__init__(f'{msg} (at offset {offset})')
        self.offset = offset


class ScriptDecodingError(BSASMError):

    def __init__(self, msg: str, *, offset: int) -> None:
        super().__init__(f'{msg} (at offset {offset})')
        self.offset = offset


class AssemblyError(BSASMError):

    def __init__(self, msg: str, token: Optional[str] = None) -> None:
        if token is not None:
            msg = f'{msg}: {token}'

        super().__init__(re.sub('[\\x00-\x1F]', '?', msg))
        self.token = token


class UnrecognizedTokenError(AssemblyError):
    ...


class UnimplementedLiteralError(AssemblyError):
    ...


class OversizedPayloadError(AssemblyError):
    ...


class NestedScriptError(AssemblyError):

    def __init__(self, msg: str, token: str, *, offset: int) -> None:
        super().__init__(msg, token)
        self.offset = offset


def as_byte_stream(source: ByteSource) -> BinaryIO:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesIO(source)

    return source


class SpendReference:
    """Points to a specific output of a previous transaction, by the hash
    of that transaction and the position of the output within it.

    Serialized as 36 bytes: the hash as-is, then the index as
    a 4-byte little-endian unsigned integer.
    """

    hash: bytes
    index: int

    def __init__(self, hash: bytes = NULL_HASH, index: int = 0) -> None:
        self.hash = bytes(hash)
        self.index = index

    def reset(self) -> None:
        self.hash = NULL_HASH
        self.index = 0

    def is_valid(self) -> bool:
        return self.index != 0 or self.hash != NULL_HASH

    def is_null(self) -> bool:
        # The marker used in coinbase inputs. Note that this is not
        # the negation of is_valid()
        return self.index == MAX_UINT32 and self.hash == NULL_HASH

    @classmethod
    def fixed_size(cls) -> int:
        return HASH_SIZE + 4

    def serialized_size(self) -> int:
        return self.fixed_size()

    @classmethod
    def deserialize(cls, source: ByteSource) -> 'SpendReference':
        f = as_byte_stream(source)

        try:
            hash = ser_read(f, HASH_SIZE)
        except SerializationTruncationError:
            raise TruncatedInputError(
                'input ended before the hash was read', offset=0)

        try:
            index = struct.unpack('<I', ser_read(f, 4))[0]
        except SerializationTruncationError:
            raise TruncatedInputError(
                'input ended before the index was read', offset=HASH_SIZE)

        return cls(hash, index)

    def from_data(self, source: ByteSource) -> bool:
        self.reset()

        try:
            decoded = self.deserialize(source)
        except (TruncatedInputError, OSError, ValueError):
            return False

        self.hash = decoded.hash
        self.index = decoded.index

        return True

    def to_data(self) -> bytes:
        if len(self.hash) != HASH_SIZE:
            raise ValueError(f'hash must be {HASH_SIZE} bytes in length')

        if not 0 <= self.index <= MAX_UINT32:
            raise ValueError('index must fit into 32 bits')

        data = self.hash + struct.pack('<I', self.index)
        assert len(data) == self.serialized_size()
        return data

    def checksum(self) -> int:
        """Row key for hash-table and database bucketing. The index is
        written over the first 4 bytes of a copy of the hash, and the first
        8 bytes of the result, read as little-endian, are taken modulo 2**63
        """
        mixed = bytearray(self.hash)
        mixed[:4] = struct.pack('<I', self.index)
        value = struct.unpack('<Q', mixed[:8])[0]
        return value & (CHECKSUM_DIVISOR - 1)

    def to_string(self) -> str:
        return f'\thash = {self.hash[::-1].hex()}\n\tindex = {self.index}'

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SpendReference):
            return NotImplemented

        return self.hash == other.hash and self.index == other.index

    def __repr__(self) -> str:
        return (f'{self.__class__.__name__}(hash=x(\'{self.hash.hex()}\'), '
                f'index={self.index})')


def decode_spend_reference(source: ByteSource) -> tuple[SpendReference, bool]:
    ref = SpendReference()
    return ref, ref.from_data(source)


g_opcode_table: dict[str, 'OpCode'] = {}
g_opcode_by_code: dict[int, 'OpCode'] = {}


class OpCode:

    def __init__(self, code: int, *names: str) -> None:
        self._code = code
        self._name = names[0]
        self._aliases = names[1:]

        if any(n in g_opcode_table for n in names):
            raise ValueError('duplicate name or alias')

        if code in g_opcode_by_code:
            raise ValueError('duplicate opcode')

        for name in names:
            g_opcode_table[name] = self

        g_opcode_by_code[code] = self

    @property
    def name(self) -> str:
        return self._name

    @property
    def code(self) -> int:
        return self._code

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, OpCode):
            raise ValueError(
                f'{self.__class__.__name__} can only be compared '
                f'for equality with OpCode instance, but '
                f'we got {type(other)}')

        return self._code == other._code

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, OpCode):
            raise ValueError('can only be compared with OpCode instance')
        return self._code < other._code

    def __int__(self) -> int:
        return self._code

    def __repr__(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.name

    def __hash__(self) -> int:
        return hash(self._code)


OP_0 = OpCode(0x00, '0', 'FALSE')
OP_PUSHDATA1 = OpCode(0x4c, 'PUSHDATA1')
OP_PUSHDATA2 = OpCode(0x4d, 'PUSHDATA2')
OP_PUSHDATA4 = OpCode(0x4e, 'PUSHDATA4')
OP_1NEGATE = OpCode(0x4f, '1NEGATE')
OP_RESERVED = OpCode(0x50, 'RESERVED')
OP_1 = OpCode(0x51, '1', 'TRUE')
OP_2 = OpCode(0x52, '2')
OP_3 = OpCode(0x53, '3')
OP_4 = OpCode(0x54, '4')
OP_5 = OpCode(0x55, '5')
OP_6 = OpCode(0x56, '6')
OP_7 = OpCode(0x57, '7')
OP_8 = OpCode(0x58, '8')
OP_9 = OpCode(0x59, '9')
OP_10 = OpCode(0x5a, '10')
OP_11 = OpCode(0x5b, '11')
OP_12 = OpCode(0x5c, '12')
OP_13 = OpCode(0x5d, '13')
OP_14 = OpCode(0x5e, '14')
OP_15 = OpCode(0x5f, '15')
OP_16 = OpCode(0x60, '16')
OP_NOP = OpCode(0x61, 'NOP')
OP_VER = OpCode(0x62, 'VER')
OP_IF = OpCode(0x63, 'IF')
OP_NOTIF = OpCode(0x64, 'NOTIF')
OP_VERIF = OpCode(0x65, 'VERIF')
OP_VERNOTIF = OpCode(0x66, 'VERNOTIF')
OP_ELSE = OpCode(0x67, 'ELSE')
OP_ENDIF = OpCode(0x68, 'ENDIF')
OP_VERIFY = OpCode(0x69, 'VERIFY')
OP_RETURN = OpCode(0x6a, 'RETURN')
OP_TOALTSTACK = OpCode(0x6b, 'TOALTSTACK')
OP_FROMALTSTACK = OpCode(0x6c, 'FROMALTSTACK')
OP_2DROP = OpCode(0x6d, '2DROP')
OP_2DUP = OpCode(0x6e, '2DUP')
OP_3DUP = OpCode(0x6f, '3DUP')
OP_2OVER = OpCode(0x70, '2OVER')
OP_2ROT = OpCode(0x71, '2ROT')
OP_2SWAP = OpCode(0x72, '2SWAP')
OP_IFDUP = OpCode(0x73, 'IFDUP')
OP_DEPTH = OpCode(0x74, 'DEPTH')
OP_DROP = OpCode(0x75, 'DROP')
OP_DUP = OpCode(0x76, 'DUP')
OP_NIP = OpCode(0x77, 'NIP')
OP_OVER = OpCode(0x78, 'OVER')
OP_PICK = OpCode(0x79, 'PICK')
OP_ROLL = OpCode(0x7a, 'ROLL')
OP_ROT = OpCode(0x7b, 'ROT')
OP_SWAP = OpCode(0x7c, 'SWAP')
OP_TUCK = OpCode(0x7d, 'TUCK')
OP_CAT = OpCode(0x7e, 'CAT')
OP_SUBSTR = OpCode(0x7f, 'SUBSTR')
OP_LEFT = OpCode(0x80, 'LEFT')
OP_RIGHT = OpCode(0x81, 'RIGHT')
OP_SIZE = OpCode(0x82, 'SIZE')
OP_INVERT = OpCode(0x83, 'INVERT')
OP_AND = OpCode(0x84, 'AND')
OP_OR = OpCode(0x85, 'OR')
OP_XOR = OpCode(0x86, 'XOR')
OP_EQUAL = OpCode(0x87, 'EQUAL')
OP_EQUALVERIFY = OpCode(0x88, 'EQUALVERIFY')
OP_RESERVED1 = OpCode(0x89, 'RESERVED1')
OP_RESERVED2 = OpCode(0x8a, 'RESERVED2')
OP_1ADD = OpCode(0x8b, '1ADD')
OP_1SUB = OpCode(0x8c, '1SUB')
OP_2MUL = OpCode(0x8d, '2MUL')
OP_2DIV = OpCode(0x8e, '2DIV')
OP_NEGATE = OpCode(0x8f, 'NEGATE')
OP_ABS = OpCode(0x90, 'ABS')
OP_NOT = OpCode(0x91, 'NOT')
OP_0NOTEQUAL = OpCode(0x92, '0NOTEQUAL')
OP_ADD = OpCode(0x93, 'ADD')
OP_SUB = OpCode(0x94, 'SUB')
OP_MUL = OpCode(0x95, 'MUL')
OP_DIV = OpCode(0x96, 'DIV')
OP_MOD = OpCode(0x97, 'MOD')
OP_LSHIFT = OpCode(0x98, 'LSHIFT')
OP_RSHIFT = OpCode(0x99, 'RSHIFT')
OP_BOOLAND = OpCode(0x9a, 'BOOLAND')
OP_BOOLOR = OpCode(0x9b, 'BOOLOR')
OP_NUMEQUAL = OpCode(0x9c, 'NUMEQUAL')
OP_NUMEQUALVERIFY = OpCode(0x9d, 'NUMEQUALVERIFY')
OP_NUMNOTEQUAL = OpCode(0x9e, 'NUMNOTEQUAL')
OP_LESSTHAN = OpCode(0x9f, 'LESSTHAN')
OP_GREATERTHAN = OpCode(0xa0, 'GREATERTHAN')
OP_LESSTHANOREQUAL = OpCode(0xa1, 'LESSTHANOREQUAL')
OP_GREATERTHANOREQUAL = OpCode(0xa2, 'GREATERTHANOREQUAL')
OP_MIN = OpCode(0xa3, 'MIN')
OP_MAX = OpCode(0xa4, 'MAX')
OP_WITHIN = OpCode(0xa5, 'WITHIN')
OP_RIPEMD160 = OpCode(0xa6, 'RIPEMD160')
OP_SHA1 = OpCode(0xa7, 'SHA1')
OP_SHA256 = OpCode(0xa8, 'SHA256')
OP_HASH160 = OpCode(0xa9, 'HASH160')
OP_HASH256 = OpCode(0xaa, 'HASH256')
OP_CODESEPARATOR = OpCode(0xab, 'CODESEPARATOR')
OP_CHECKSIG = OpCode(0xac, 'CHECKSIG')
OP_CHECKSIGVERIFY = OpCode(0xad, 'CHECKSIGVERIFY')
OP_CHECKMULTISIG = OpCode(0xae, 'CHECKMULTISIG')
OP_CHECKMULTISIGVERIFY = OpCode(0xaf, 'CHECKMULTISIGVERIFY')
OP_NOP1 = OpCode(0xb0, 'NOP1')
OP_CHECKLOCKTIMEVERIFY = OpCode(0xb1, 'CHECKLOCKTIMEVERIFY', 'NOP2')
OP_CHECKSEQUENCEVERIFY = OpCode(0xb2, 'CHECKSEQUENCEVERIFY', 'NOP3')
OP_NOP4 = OpCode(0xb3, 'NOP4')
OP_NOP5 = OpCode(0xb4, 'NOP5')
OP_NOP6 = OpCode(0xb5, 'NOP6')
OP_NOP7 = OpCode(0xb6, 'NOP7')
OP_NOP8 = OpCode(0xb7, 'NOP8')
OP_NOP9 = OpCode(0xb8, 'NOP9')
OP_NOP10 = OpCode(0xb9, 'NOP10')
OP_CHECKSIGADD = OpCode(0xba, 'CHECKSIGADD')
OP_INVALIDOPCODE = OpCode(0xff, 'INVALIDOPCODE')

OPCODE_TABLE = types.MappingProxyType(g_opcode_table)
OPCODE_BY_CODE = types.MappingProxyType(g_opcode_by_code)

# struct formats of the length prefixes, by opcode
PUSHDATA_LENGTH_FORMATS = {
    OP_PUSHDATA1.code: '<B',
    OP_PUSHDATA2.code: '<H',
    OP_PUSHDATA4.code: '<I',
}


def small_int_opcode(n: int) -> OpCode:
    if not 1 <= n <= 16:
        raise ValueError(f'no small integer opcode for {n}')

    return OPCODE_BY_CODE[OP_1.code + n - 1]


def pushdata_opcode_for_size(size: int, token: Optional[str] = None) -> int:
    if size == 0:
        return OP_0.code

    if size < OP_PUSHDATA1.code:
        return size  # the opcode itself is the length

    if size <= 0xff:
        return OP_PUSHDATA1.code

    if size <= 0xffff:
        return OP_PUSHDATA2.code

    if size <= MAX_PUSHDATA_SIZE:
        return OP_PUSHDATA4.code

    raise OversizedPayloadError(
        f'payload of {size} bytes cannot be pushed, the limit is '
        f'{MAX_PUSHDATA_SIZE} bytes', token)


class Operation:
    """Single opcode byte, with the payload for the opcodes of the
    push family (0x00 .. PUSHDATA4)
    """

    __slots__ = ('code', 'data')

    code: int
    data: bytes

    def __init__(self, code: Union[int, OpCode], data: bytes = b'') -> None:
        code = int(code)
        data = bytes(data)

        if not 0 <= code <= 0xff:
            raise ValueError(f'opcode {code} does not fit into one byte')

        if code < OP_PUSHDATA1.code:
            if len(data) != code:
                raise ValueError(
                    f'opcode 0x{code:02x} pushes exactly {code} bytes, '
                    f'but got {len(data)}')
        elif code in PUSHDATA_LENGTH_FORMATS:
            max_size = (1 << (8*struct.calcsize(PUSHDATA_LENGTH_FORMATS[code]))) - 1
            if len(data) > max_size:
                raise ValueError(
                    f'{OPCODE_BY_CODE[code]} can push at most {max_size} bytes')
        elif data:
            raise ValueError(f'opcode 0x{code:02x} does not take data')

        self.code = code
        self.data = data

    def is_push(self) -> bool:
        return self.code <= OP_PUSHDATA4.code

    @property
    def opcode(self) -> Optional[OpCode]:
        return OPCODE_BY_CODE.get(self.code)

    def serialize(self) -> bytes:
        prefix = b''
        if fmt := PUSHDATA_LENGTH_FORMATS.get(self.code):
            prefix = struct.pack(fmt, len(self.data))

        return bytes([self.code]) + prefix + self.data

    def serialized_size(self) -> int:
        size = 1 + len(self.data)
        if fmt := PUSHDATA_LENGTH_FORMATS.get(self.code):
            size += struct.calcsize(fmt)

        return size

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Operation):
            return NotImplemented

        return self.code == other.code and self.data == other.data

    def __hash__(self) -> int:
        return hash((self.code, self.data))

    def __str__(self) -> str:
        if self.code == OP_0.code:
            return str(OP_0)

        if self.is_push():
            return f"x('{self.data.hex()}')"

        if op := self.opcode:
            return op.name

        return f'0x{self.code:02x}'

    def __repr__(self) -> str:
        if self.is_push() and self.code != OP_0.code:
            return f"{self.__class__.__name__}(0x{self.code:02x}, x('{self.data.hex()}'))"

        return f'{self.__class__.__name__}({self})'


class Script:
    """Ordered sequence of operations. Operations are only ever appended,
    and serialization is the plain concatenation of serialized operations
    """

    def __init__(self, operations: Iterable[Operation] = ()) -> None:
        self._operations: list[Operation] = list(operations)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Script':
        operations: list[Operation] = []
        offset = 0
        try:
            for script_op, script_data, sop_idx in CScript(data).raw_iter():
                op = Operation(script_op, script_data or b'')
                operations.append(op)
                offset = sop_idx + op.serialized_size()
        except CScriptInvalidError as e:
            raise ScriptDecodingError(f'cannot decode script: {e}',
                                      offset=offset)

        return cls(operations)

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(self._operations)

    def append(self, op: Operation) -> None:
        self._operations.append(op)

    def extend(self, other: Iterable[Operation]) -> None:
        self._operations.extend(other)

    def serialize(self) -> bytes:
        return b''.join(op.serialize() for op in self._operations)

    def to_cscript(self) -> CScript:
        return CScript(self.serialize())

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __getitem__(self, idx: int) -> Operation:
        return self._operations[idx]

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Script):
            return NotImplemented

        return self._operations == other._operations

    def __str__(self) -> str:
        return ' '.join(str(op) for op in self._operations)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}([{", ".join(repr(op) for op in self._operations)}])'


def integer_to_scriptnum(v: int) -> bytes:
    if v == 0:
        return b''

    neg = v < 0
    abs_v = abs(v)

    byte_values: list[int] = []
    while abs_v:
        byte_values.append(abs_v & 0xFF)
        abs_v >>= 8

    if byte_values[-1] & 0x80:
        byte_values.append(0x80 if neg else 0)
    elif neg:
        byte_values[-1] |= 0x80

    return bytes(byte_values)


def scriptnum_to_integer(v: bytes, *, require_minimal: bool = True) -> int:
    if len(v) > 0 and require_minimal:
        # If the most-significant-byte - excluding the sign bit - is zero
        # then we're not minimal. Note how this test also rejects the
        # negative-zero encoding, 0x80.
        if v[-1] & 0x7f == 0:
            # One exception: if there's more than one byte and the most
            # significant bit of the second-most-significant-byte is set
            # it would conflict with the sign bit. An example of this case
            # is +-255, which encode to 0xff00 and 0xff80 respectively.
            # (big-endian).
            if len(v) <= 1 or (v[len(v) - 2] & 0x80) == 0:
                raise ValueError("non-minimally encoded script number")

    result = 0
    if len(v):
        for i, b in enumerate(v):
            result |= b << 8*i

        if v[-1] & 0x80:
            result -= 0x80 << 8*(len(v)-1)
            return -result

    return result


class TokenKind(enum.Enum):
    NUMBER = enum.auto()
    HEX_DATA = enum.auto()
    QUOTED_STRING = enum.auto()
    OPCODE = enum.auto()


def is_number(token: str) -> bool:
    return re.fullmatch('-?[0-9]+', token) is not None


def is_hex_data(token: str) -> bool:
    return (token.startswith('0x')
            and re.fullmatch('[0-9a-fA-F]*', token[2:]) is not None)


def is_quoted_string(token: str) -> bool:
    return len(token) >= 2 and token[0] == "'" and token[-1] == "'"


def token_to_opcode(token: str) -> Optional[OpCode]:
    op_name = token.upper()
    if op_name.startswith('OP_'):
        op_name = op_name[3:]

    return OPCODE_TABLE.get(op_name)


def classify_token(token: str) -> TokenKind:
    if is_number(token):
        return TokenKind.NUMBER

    if is_hex_data(token):
        return TokenKind.HEX_DATA

    if is_quoted_string(token):
        return TokenKind.QUOTED_STRING

    if token_to_opcode(token) is not None:
        return TokenKind.OPCODE

    raise UnrecognizedTokenError('unrecognized token', token)


def is_small_literal(value: int) -> bool:
    return value == -1 or 1 <= value <= 16


class ScriptAssembler:
    """Turns mnemonic text into a Script.

    Consecutive hex tokens (`0x...`) are not pushed as data: their bytes are
    concatenated and decoded as an already-serialized script, which is then
    spliced into the result. The buffer for these bytes belongs to the
    assembler instance and is reset on each call to assemble()
    """

    def __init__(self) -> None:
        self._script = Script()
        self._hex_raw = bytearray()
        self._hex_tokens: list[str] = []

    def assemble(self, text: str) -> Script:
        self._script = Script()
        self._hex_raw.clear()
        self._hex_tokens.clear()

        for token in text.split():
            self.parse_token(token)

        self.flush_hex_data()

        return self._script

    def parse_token(self, token: str) -> None:
        kind = classify_token(token)

        if kind == TokenKind.HEX_DATA:
            try:
                self._hex_raw.extend(bytes.fromhex(token[2:]))
            except ValueError:
                raise UnrecognizedTokenError('cannot decode hex data', token)

            self._hex_tokens.append(token)
            return

        self.flush_hex_data()

        if kind == TokenKind.NUMBER:
            self.push_number(token)
        elif kind == TokenKind.QUOTED_STRING:
            self.push_data(token[1:-1].encode('utf-8', 'surrogateescape'), token)
        else:
            assert kind == TokenKind.OPCODE
            op = token_to_opcode(token)
            assert op is not None
            self._script.append(Operation(op))

    def flush_hex_data(self) -> None:
        if not self._hex_tokens:
            return

        token = ' '.join(self._hex_tokens)
        try:
            nested = Script.from_bytes(bytes(self._hex_raw))
        except ScriptDecodingError as e:
            raise NestedScriptError(str(e), token, offset=e.offset)

        self._script.extend(nested)

        self._hex_raw.clear()
        self._hex_tokens.clear()

    def push_number(self, token: str) -> None:
        # int() refuses overlong digit strings before the range check
        try:
            value = int(token)
        except ValueError:
            value = None

        if value is None or not MIN_INT64 <= value <= MAX_INT64:
            raise UnrecognizedTokenError(
                'number does not fit into 64-bit signed integer', token)

        if is_small_literal(value):
            self.push_literal(value, token)
        else:
            self.push_data(integer_to_scriptnum(value), token)

    def push_literal(self, value: int, token: str) -> None:
        assert is_small_literal(value)

        if value == -1:
            raise UnimplementedLiteralError(
                'literal -1 is not supported, use 1NEGATE opcode instead',
                token)

        self._script.append(Operation(small_int_opcode(value)))

    def push_data(self, data: bytes, token: Optional[str] = None) -> None:
        code = pushdata_opcode_for_size(len(data), token)
        self._script.append(Operation(code, data))


def assemble(text: str) -> Script:
    return ScriptAssembler().assemble(text)


class ScriptEngine(Protocol):

    def make_transaction(self, spend_reference: SpendReference,
                         unlocking: Script) -> Any:
        ...

    def run(self, unlocking: Script, locking: Script, tx: Any,
            input_index: int) -> bool:
        ...


class BitcoinTxScriptEngine:
    """Executes scripts with the script interpreter of python-bitcointx
    """

    def __init__(self, *, p2sh_flag: bool = False) -> None:
        self.p2sh_flag = p2sh_flag
        self.last_error: Optional[Exception] = None

    def make_transaction(self, spend_reference: SpendReference,
                         unlocking: Script) -> CTransaction:
        prevout = COutPoint(spend_reference.hash, spend_reference.index)
        return CTransaction([CTxIn(prevout, unlocking.to_cscript())],
                            [CTxOut()])

    def run(self, unlocking: Script, locking: Script, tx: CTransaction,
            input_index: int) -> bool:
        flags: set[Any] = set()
        if self.p2sh_flag:
            flags.add(SCRIPT_VERIFY_P2SH)

        self.last_error = None
        try:
            VerifyScript(unlocking.to_cscript(), locking.to_cscript(),
                         tx, input_index, flags=flags)
        except ValidationError as e:
            self.last_error = e
            return False

        return True


class AsmEnvironment:

    @property
    def log_progress(self) -> bool:
        """Print the description of the test, and the scripts as they are
        assembled, each with the text it was assembled from.
        The progress log lines are sent to STDOUT
        """
        return self._log_progress

    @log_progress.setter
    def log_progress(self, value: bool) -> None:
        self._log_progress = value

    @property
    def spend_reference(self) -> str:
        """Hex-encoded reference to the output that is spent by the
        transaction given to the script engine: 32 bytes of transaction hash,
        followed by the output index as 4-byte little-endian integer.
        The default is the reference used in coinbase inputs
        """
        return self._spend_reference.to_data().hex()

    @spend_reference.setter
    def spend_reference(self, value: str) -> None:
        try:
            data = bytes.fromhex(value)
        except ValueError:
            raise ValueError('spend reference must be hex-encoded')

        if len(data) != SpendReference.fixed_size():
            raise ValueError(
                f'spend reference must be exactly '
                f'{SpendReference.fixed_size()} bytes in length')

        ref, is_ok = decode_spend_reference(data)
        assert is_ok

        self._spend_reference = ref

    @property
    def p2sh_flag(self) -> bool:
        """Evaluate pay-to-script-hash locking scripts according to BIP16
        """
        return self._p2sh_flag

    @p2sh_flag.setter
    def p2sh_flag(self, value: bool) -> None:
        self._p2sh_flag = value

    def __init__(self) -> None:
        self._log_progress = True
        self._spend_reference = SpendReference(NULL_HASH, MAX_UINT32)
        self._p2sh_flag = False

        self.engine: Optional[ScriptEngine] = None

    def get_spend_reference(self) -> SpendReference:
        return SpendReference(self._spend_reference.hash,
                              self._spend_reference.index)

    def get_engine(self) -> ScriptEngine:
        if self.engine is None:
            self.engine = BitcoinTxScriptEngine(p2sh_flag=self.p2sh_flag)

        return self.engine

    @classmethod
    def is_option(cls, name: str) -> bool:
        return (not name.startswith('_')
                and name in cls.__dict__.keys()
                and isinstance(getattr(cls, name), property)
                and bool(getattr(cls, name).__doc__))

    def write_out(self, msg: str, f: Any) -> None:
        if msg:
            f.write(msg)
            f.flush()

    def write(self, msg: str) -> None:
        self.write_out(msg, sys.stdout)

    def write_line(self, msg: str) -> None:
        assert not msg.endswith('\n')
        self.write(f'{msg}\n')


g_current_environment: AsmEnvironment | None = None


@contextmanager
def CurrentEnvironment(env: Optional[AsmEnvironment]) -> Generator[None, None, None]:
    global g_current_environment

    prev_env = g_current_environment
    g_current_environment = env
    try:
        yield
    finally:
        g_current_environment = prev_env


def cur_env() -> AsmEnvironment:
    global g_current_environment
    assert g_current_environment is not None
    return g_current_environment


def main(args: Sequence[str]) -> int:
    env = cur_env()

    if len(args) != 3:
        sys.stderr.write(
            "Expected exactly three arguments: input script, output script, "
            "and the description. Use --help to show usage\n")
        return -1

    input_string, output_string, description = args

    try:
        input_script = assemble(input_string)
    except AssemblyError as e:
        sys.stderr.write(f'Error parsing input: {input_string}\n{e}\n')
        return -1

    try:
        output_script = assemble(output_string)
    except AssemblyError as e:
        sys.stderr.write(f'Error parsing output: {output_string}\n{e}\n')
        return -1

    if env.log_progress:
        if description:
            env.write_line(description)
        env.write_line(f'{input_string} -> {input_script}')
        env.write_line(f'{output_string} -> {output_script}')

    engine = env.get_engine()
    tx = engine.make_transaction(env.get_spend_reference(), input_script)
    if not engine.run(input_script, output_script, tx, 0):
        sys.stderr.write('Error running scripts\n')
        return 1

    return 0


def usage() -> None:
    progname = os.path.basename(sys.argv[0])
    print()
    print("B'SASM: Bitcoin-like Script Assembler")
    print()
    print(
        "Assembles the input (unlocking) and output (locking) scripts from their\n"
        "mnemonic notation, and runs them with the script interpreter against\n"
        "a transaction that spends the configured output.")
    print()
    print("Tokens are separated by whitespace. Numbers are pushed as minimally-encoded\n"
          "script numbers, 1 to 16 as OP_1 .. OP_16. Quoted strings ('abc') are pushed\n"
          "as data. Consecutive hex tokens (0x...) are concatenated and inserted as\n"
          "already-serialized script. Other tokens are opcode names, with or without\n"
          "the OP_ prefix, in any case.")
    print()
    print(f"Free for non-commercial use. Licensed under Prosperity Public License 3.0.0.\n"
          f"Please run \"{progname} --license\" to display the license.\n")
    print(f"Usage: {progname} [options] [settings] <input> <output> <description>")
    print()
    print("Exit code is 0 if the scripts ran successfully, 1 if the script")
    print("interpreter reported failure, and -1 on incorrect arguments or")
    print("when one of the scripts cannot be assembled")
    print()
    print("Available options:")
    print()
    print("  --help")
    print()
    print("        Show help on usage")
    print()
    print("  --license")
    print()
    print("        Show the software license this program is released under")
    print()
    print("  --version")
    print()
    print("        Show version")
    print()
    print("Available settings:")
    print()
    print("  Default value for each setting is shown after the '=' sign")
    print()

    dfl_env = AsmEnvironment()
    for key, value in AsmEnvironment.__dict__.items():
        if AsmEnvironment.is_option(key):
            name = key.replace('_', '-')
            text = re.sub('^\\ *', '        ', value.__doc__, flags=re.M)

            dfl_v = getattr(dfl_env, key)
            if isinstance(dfl_v, bool):
                dfl_v_str = 'true' if dfl_v else 'false'
            else:
                dfl_v_str = f"'{dfl_v}'"

            print(f'  --{name}={dfl_v_str}\n\n{text}')


def show_license() -> None:
    print(sys.modules['bsasm'].__doc__)


def parse_cmdline_args(args: Iterable[str]) -> list[str]:  # noqa
    env = cur_env()

    positional: list[str] = []

    for arg in args:
        if not arg.startswith('--'):
            positional.append(arg)
            continue

        if arg == '--help':
            usage()
            sys.exit()

        if arg == '--license':
            show_license()
            sys.exit()

        if arg == '--version':
            print(VERSION)
            sys.exit()

        if '=' in arg:
            argname, value_str = arg[2:].split('=', 1)
        else:
            argname = arg[2:]
            value_str = ''

        name = argname.replace('-', '_')
        if not name.isidentifier():
            sys.stderr.write("Incorrect setting name\n")
            sys.exit(-1)

        if not AsmEnvironment.is_option(name):
            sys.stderr.write(f"Unrecognized setting \"--{argname}\"\n")
            sys.exit(-1)

        if not value_str:
            sys.stderr.write(f"Value for \"--{argname}\" must be specified\n")
            sys.exit(-1)

        cur_v = getattr(env, name)
        if isinstance(cur_v, bool):
            if value_str == 'true':
                setattr(env, name, True)
            elif value_str == 'false':
                setattr(env, name, False)
            else:
                sys.stderr.write(
                    f"Setting \"--{argname}\" can be only 'true' or 'false'\n")
                sys.exit(-1)
        elif isinstance(cur_v, str):
            try:
                setattr(env, name, value_str)
            except ValueError as e:
                sys.stderr.write(f"Incorrect value for --{argname}: {e}\n")
                sys.exit(-1)
        else:
            raise AssertionError('unhandled type of option value')

    return positional


def main_cli() -> None:
    with CurrentEnvironment(AsmEnvironment()):
        positional = parse_cmdline_args(sys.argv[1:])
        sys.exit(main(positional))


VERSION = "0.1.0.dev0"

if __name__ == '__main__':
    main_cli()
