"""Assembly identity extraction from PE/CLI metadata.

The reader walks the on-disk layout directly (DOS header, PE headers, CLI
header, metadata root, ``#~`` table stream) and never loads or executes the
file. Only the ``Assembly`` table row is decoded; the preceding tables are
sized but otherwise skipped.
"""

from __future__ import annotations

import hashlib
import struct
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

from .logging import get_logger
from .models import AssemblyIdentity, AssemblyVersion, FileMetadataRecord

logger = get_logger("metadata")

_DOS_MAGIC = b"MZ"
_PE_SIGNATURE = b"PE\0\0"
_PE32_MAGIC = 0x10B
_PE32_PLUS_MAGIC = 0x20B
_CLR_DIRECTORY_INDEX = 14
_METADATA_SIGNATURE = 0x424A5342  # "BSJB"

_HEAP_STRING_WIDE = 0x01
_HEAP_GUID_WIDE = 0x02
_HEAP_BLOB_WIDE = 0x04
_HEAP_EXTRA_DATA = 0x40

# Metadata table identifiers (ECMA-335 II.22).
MODULE = 0x00
TYPE_REF = 0x01
TYPE_DEF = 0x02
FIELD_PTR = 0x03
FIELD = 0x04
METHOD_PTR = 0x05
METHOD_DEF = 0x06
PARAM_PTR = 0x07
PARAM = 0x08
INTERFACE_IMPL = 0x09
MEMBER_REF = 0x0A
CONSTANT = 0x0B
CUSTOM_ATTRIBUTE = 0x0C
FIELD_MARSHAL = 0x0D
DECL_SECURITY = 0x0E
CLASS_LAYOUT = 0x0F
FIELD_LAYOUT = 0x10
STAND_ALONE_SIG = 0x11
EVENT_MAP = 0x12
EVENT_PTR = 0x13
EVENT = 0x14
PROPERTY_MAP = 0x15
PROPERTY_PTR = 0x16
PROPERTY = 0x17
METHOD_SEMANTICS = 0x18
METHOD_IMPL = 0x19
MODULE_REF = 0x1A
TYPE_SPEC = 0x1B
IMPL_MAP = 0x1C
FIELD_RVA = 0x1D
ENC_LOG = 0x1E
ENC_MAP = 0x1F
ASSEMBLY = 0x20
ASSEMBLY_REF = 0x23
FILE = 0x26
EXPORTED_TYPE = 0x27
MANIFEST_RESOURCE = 0x28
GENERIC_PARAM = 0x2A
METHOD_SPEC = 0x2B
GENERIC_PARAM_CONSTRAINT = 0x2C

_TABLE_SLOTS = 64

_CODED_INDEXES: Dict[str, Tuple[int, Tuple[int, ...]]] = {
    "TypeDefOrRef": (2, (TYPE_DEF, TYPE_REF, TYPE_SPEC)),
    "HasConstant": (2, (FIELD, PARAM, PROPERTY)),
    "HasCustomAttribute": (
        5,
        (
            METHOD_DEF,
            FIELD,
            TYPE_REF,
            TYPE_DEF,
            PARAM,
            INTERFACE_IMPL,
            MEMBER_REF,
            MODULE,
            DECL_SECURITY,
            PROPERTY,
            EVENT,
            STAND_ALONE_SIG,
            MODULE_REF,
            TYPE_SPEC,
            ASSEMBLY,
            ASSEMBLY_REF,
            FILE,
            EXPORTED_TYPE,
            MANIFEST_RESOURCE,
            GENERIC_PARAM,
            GENERIC_PARAM_CONSTRAINT,
            METHOD_SPEC,
        ),
    ),
    "HasFieldMarshal": (1, (FIELD, PARAM)),
    "HasDeclSecurity": (2, (TYPE_DEF, METHOD_DEF, ASSEMBLY)),
    "MemberRefParent": (3, (TYPE_DEF, TYPE_REF, MODULE_REF, METHOD_DEF, TYPE_SPEC)),
    "HasSemantics": (1, (EVENT, PROPERTY)),
    "MethodDefOrRef": (1, (METHOD_DEF, MEMBER_REF)),
    "MemberForwarded": (1, (FIELD, METHOD_DEF)),
    "CustomAttributeType": (3, (METHOD_DEF, MEMBER_REF)),
    "ResolutionScope": (2, (MODULE, MODULE_REF, ASSEMBLY_REF, TYPE_REF)),
}

# Column kinds: an int is a fixed width in bytes, "string"/"guid"/"blob" are
# heap indexes, ("table", id) is a simple row index, ("coded", name) a coded index.
Column = Union[int, str, Tuple[str, object]]

_STRING = "string"
_GUID = "guid"
_BLOB = "blob"


def _table(table_id: int) -> Tuple[str, object]:
    return ("table", table_id)


def _coded(name: str) -> Tuple[str, object]:
    return ("coded", name)


# Row layouts for every table stored before Assembly.
_TABLE_SCHEMAS: Dict[int, Sequence[Column]] = {
    MODULE: (2, _STRING, _GUID, _GUID, _GUID),
    TYPE_REF: (_coded("ResolutionScope"), _STRING, _STRING),
    TYPE_DEF: (4, _STRING, _STRING, _coded("TypeDefOrRef"), _table(FIELD), _table(METHOD_DEF)),
    FIELD_PTR: (_table(FIELD),),
    FIELD: (2, _STRING, _BLOB),
    METHOD_PTR: (_table(METHOD_DEF),),
    METHOD_DEF: (4, 2, 2, _STRING, _BLOB, _table(PARAM)),
    PARAM_PTR: (_table(PARAM),),
    PARAM: (2, 2, _STRING),
    INTERFACE_IMPL: (_table(TYPE_DEF), _coded("TypeDefOrRef")),
    MEMBER_REF: (_coded("MemberRefParent"), _STRING, _BLOB),
    CONSTANT: (2, _coded("HasConstant"), _BLOB),
    CUSTOM_ATTRIBUTE: (_coded("HasCustomAttribute"), _coded("CustomAttributeType"), _BLOB),
    FIELD_MARSHAL: (_coded("HasFieldMarshal"), _BLOB),
    DECL_SECURITY: (2, _coded("HasDeclSecurity"), _BLOB),
    CLASS_LAYOUT: (2, 4, _table(TYPE_DEF)),
    FIELD_LAYOUT: (4, _table(FIELD)),
    STAND_ALONE_SIG: (_BLOB,),
    EVENT_MAP: (_table(TYPE_DEF), _table(EVENT)),
    EVENT_PTR: (_table(EVENT),),
    EVENT: (2, _STRING, _coded("TypeDefOrRef")),
    PROPERTY_MAP: (_table(TYPE_DEF), _table(PROPERTY)),
    PROPERTY_PTR: (_table(PROPERTY),),
    PROPERTY: (2, _STRING, _BLOB),
    METHOD_SEMANTICS: (2, _table(METHOD_DEF), _coded("HasSemantics")),
    METHOD_IMPL: (_table(TYPE_DEF), _coded("MethodDefOrRef"), _coded("MethodDefOrRef")),
    MODULE_REF: (_STRING,),
    TYPE_SPEC: (_BLOB,),
    IMPL_MAP: (2, _coded("MemberForwarded"), _STRING, _table(MODULE_REF)),
    FIELD_RVA: (4, _table(FIELD)),
    ENC_LOG: (4, 4),
    ENC_MAP: (4,),
}


class MetadataError(ValueError):
    """Raised when a file is not a readable .NET assembly."""


def public_key_token(public_key: bytes) -> bytes:
    """Return the 8-byte token for ``public_key`` (empty when unsigned)."""
    if not public_key:
        return b""
    return hashlib.sha1(public_key).digest()[-8:][::-1]


def read_assembly_identity(path: Path) -> AssemblyIdentity:
    """Read the assembly identity of the file at ``path``."""
    data = Path(path).read_bytes()
    return parse_assembly_identity(data)


def parse_assembly_identity(data: bytes) -> AssemblyIdentity:
    """Decode the Assembly table row from an in-memory PE image."""
    try:
        return _parse(data)
    except MetadataError:
        raise
    except (struct.error, IndexError, ValueError) as exc:
        raise MetadataError(f"malformed image: {exc}") from exc


def relativize(path: Path, root: Path) -> str:
    """Return ``path`` relative to ``root`` without leading separators."""
    path_text = str(path)
    root_text = str(root)
    if not path_text.lower().startswith(root_text.lower()):
        return path_text
    return path_text[len(root_text):].lstrip("/\\")


def extract_record(path: Path, root: Path) -> FileMetadataRecord:
    """Inspect one file, converting any read or format failure into an error record."""
    relative_path = relativize(path, root)
    try:
        identity = read_assembly_identity(path)
    except (MetadataError, OSError) as exc:
        logger.debug("Skipping %s: %s", relative_path, exc)
        return FileMetadataRecord(relative_path=relative_path, is_error=True, error=str(exc))

    return FileMetadataRecord(
        relative_path=relative_path,
        name=identity.name,
        version=identity.version,
        public_key_token=public_key_token(identity.public_key),
    )


def _parse(data: bytes) -> AssemblyIdentity:
    if len(data) < 0x40 or data[:2] != _DOS_MAGIC:
        raise MetadataError("not a PE image (missing MZ header)")

    (pe_offset,) = struct.unpack_from("<I", data, 0x3C)
    if data[pe_offset:pe_offset + 4] != _PE_SIGNATURE:
        raise MetadataError("not a PE image (missing PE signature)")

    coff_offset = pe_offset + 4
    _machine, section_count, _stamp, _symbols, _symbol_count, optional_size, _chars = (
        struct.unpack_from("<HHIIIHH", data, coff_offset)
    )
    optional_offset = coff_offset + 20
    sections = _read_sections(data, optional_offset + optional_size, section_count)

    cli_rva, cli_size = _clr_directory(data, optional_offset)
    if not cli_rva or not cli_size:
        raise MetadataError("not a .NET assembly (no CLI header)")

    cli_offset = _rva_to_offset(cli_rva, sections, len(data))
    _cb, _major, _minor, metadata_rva, metadata_size = struct.unpack_from(
        "<IHHII", data, cli_offset
    )
    if not metadata_rva or not metadata_size:
        raise MetadataError("CLI header has no metadata directory")

    metadata_offset = _rva_to_offset(metadata_rva, sections, len(data))
    streams = _read_stream_headers(data, metadata_offset)

    tables = streams.get("#~") or streams.get("#-")
    if tables is None:
        raise MetadataError("metadata has no table stream")
    strings = streams.get("#Strings")
    if strings is None:
        raise MetadataError("metadata has no #Strings heap")
    blobs = streams.get("#Blob")

    return _read_assembly_row(data, tables[0], strings, blobs)


def _clr_directory(data: bytes, optional_offset: int) -> Tuple[int, int]:
    (magic,) = struct.unpack_from("<H", data, optional_offset)
    if magic == _PE32_MAGIC:
        count_offset, directories_offset = 92, 96
    elif magic == _PE32_PLUS_MAGIC:
        count_offset, directories_offset = 108, 112
    else:
        raise MetadataError(f"unsupported optional header magic {magic:#x}")

    (directory_count,) = struct.unpack_from("<I", data, optional_offset + count_offset)
    if directory_count <= _CLR_DIRECTORY_INDEX:
        return 0, 0
    entry_offset = optional_offset + directories_offset + _CLR_DIRECTORY_INDEX * 8
    rva, size = struct.unpack_from("<II", data, entry_offset)
    return rva, size


def _read_sections(data: bytes, offset: int, count: int) -> List[Tuple[int, int, int]]:
    sections: List[Tuple[int, int, int]] = []
    for index in range(count):
        _name, virtual_size, virtual_address, raw_size, raw_pointer = struct.unpack_from(
            "<8sIIII", data, offset + index * 40
        )
        sections.append((virtual_address, max(virtual_size, raw_size), raw_pointer))
    return sections


def _rva_to_offset(rva: int, sections: Sequence[Tuple[int, int, int]], length: int) -> int:
    for virtual_address, size, raw_pointer in sections:
        if virtual_address <= rva < virtual_address + size:
            offset = rva - virtual_address + raw_pointer
            if offset >= length:
                break
            return offset
    raise MetadataError(f"RVA {rva:#x} is outside the file image")


def _read_stream_headers(data: bytes, metadata_offset: int) -> Dict[str, Tuple[int, int]]:
    signature, _major, _minor, _reserved, version_length = struct.unpack_from(
        "<IHHII", data, metadata_offset
    )
    if signature != _METADATA_SIGNATURE:
        raise MetadataError("bad metadata signature")

    position = metadata_offset + 16 + version_length
    _flags, stream_count = struct.unpack_from("<HH", data, position)
    position += 4

    streams: Dict[str, Tuple[int, int]] = {}
    for _ in range(stream_count):
        stream_offset, stream_size = struct.unpack_from("<II", data, position)
        position += 8
        terminator = data.index(b"\0", position, position + 32)
        name = data[position:terminator].decode("ascii")
        position = metadata_offset + _align4(terminator + 1 - metadata_offset)
        streams[name] = (metadata_offset + stream_offset, stream_size)
    return streams


def _align4(value: int) -> int:
    return (value + 3) & ~3


def _read_assembly_row(
    data: bytes,
    tables_offset: int,
    strings: Tuple[int, int],
    blobs: Tuple[int, int] | None,
) -> AssemblyIdentity:
    _reserved, _major, _minor, heap_sizes, _pad, valid, _sorted = struct.unpack_from(
        "<IBBBBQQ", data, tables_offset
    )
    position = tables_offset + 24

    rows = [0] * _TABLE_SLOTS
    for table_id in range(_TABLE_SLOTS):
        if valid >> table_id & 1:
            (rows[table_id],) = struct.unpack_from("<I", data, position)
            position += 4
    if heap_sizes & _HEAP_EXTRA_DATA:
        position += 4

    if not rows[ASSEMBLY]:
        raise MetadataError("no Assembly table (module without a manifest)")

    widths = {
        _STRING: 4 if heap_sizes & _HEAP_STRING_WIDE else 2,
        _GUID: 4 if heap_sizes & _HEAP_GUID_WIDE else 2,
        _BLOB: 4 if heap_sizes & _HEAP_BLOB_WIDE else 2,
    }
    for table_id in range(ASSEMBLY):
        if rows[table_id]:
            position += rows[table_id] * _row_size(_TABLE_SCHEMAS[table_id], rows, widths)

    _hash_algorithm, major, minor, build, revision, _flags = struct.unpack_from(
        "<IHHHHI", data, position
    )
    position += 16
    public_key_index, position = _read_index(data, position, widths[_BLOB])
    name_index, _ = _read_index(data, position, widths[_STRING])

    name = _read_string(data, strings, name_index)
    if not name:
        raise MetadataError("assembly has an empty name")

    return AssemblyIdentity(
        name=name,
        version=AssemblyVersion(major, minor, build, revision),
        public_key=_read_blob(data, blobs, public_key_index),
    )


def _row_size(schema: Sequence[Column], rows: Sequence[int], widths: Dict[str, int]) -> int:
    size = 0
    for column in schema:
        if isinstance(column, int):
            size += column
        elif isinstance(column, str):
            size += widths[column]
        elif column[0] == "table":
            size += 2 if rows[column[1]] < 0x10000 else 4
        else:
            tag_bits, targets = _CODED_INDEXES[column[1]]
            largest = max(rows[target] for target in targets)
            size += 2 if largest < 1 << (16 - tag_bits) else 4
    return size


def _read_index(data: bytes, position: int, width: int) -> Tuple[int, int]:
    (value,) = struct.unpack_from("<H" if width == 2 else "<I", data, position)
    return value, position + width


def _read_string(data: bytes, heap: Tuple[int, int], index: int) -> str:
    start, size = heap
    if index >= size:
        raise MetadataError(f"string index {index:#x} outside #Strings heap")
    end = data.index(b"\0", start + index, start + size)
    return data[start + index:end].decode("utf-8")


def _read_blob(data: bytes, heap: Tuple[int, int] | None, index: int) -> bytes:
    if index == 0:
        return b""
    if heap is None:
        raise MetadataError("blob referenced but metadata has no #Blob heap")
    start, size = heap
    if index >= size:
        raise MetadataError(f"blob index {index:#x} outside #Blob heap")

    position = start + index
    first = data[position]
    if (first & 0x80) == 0:
        length, header = first & 0x7F, 1
    elif (first & 0xC0) == 0x80:
        length, header = (first & 0x3F) << 8 | data[position + 1], 2
    elif (first & 0xE0) == 0xC0:
        (tail,) = struct.unpack_from(">I", data, position)
        length, header = tail & 0x1FFFFFFF, 4
    else:
        raise MetadataError("invalid blob length prefix")

    begin = position + header
    if begin + length > start + size:
        raise MetadataError("blob extends past the #Blob heap")
    return bytes(data[begin:begin + length])
