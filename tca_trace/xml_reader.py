"""
xctrace export XML の行リーダー

xctrace は同じ値の繰り返しを id/ref で圧縮して出力する:

    <row><subsystem id="3" fmt="com.example.app"/> ...</row>
    <row><subsystem ref="3"/> ...</row>

RowReader は <row> ごとに「要素名 -> 解決済み文字列」の辞書を返す。
"""

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Iterator
from typing import Union

from .errors import XMLParsingError

logger = logging.getLogger(__name__)

Row = dict[str, Union[str, list[str]]]

CHUNK_SIZE = 64 * 1024


def release_row(open_elements: list[ET.Element], row: ET.Element) -> None:
    """読み終えた <row> を空にして親から外す（巨大テーブルでツリーが育たないように）"""
    row.clear()
    if open_elements:
        open_elements[-1].remove(row)


def resolve_value(elem: ET.Element, id_cache: dict[str, str]) -> str:
    """ref を解決するか、要素自身の値（テキスト優先、なければ fmt）を返す"""
    ref = elem.get("ref")
    if ref is not None:
        # 未定義の ref は空扱い
        return id_cache.get(ref, "")
    text = (elem.text or "").strip()
    if text:
        return text
    return elem.get("fmt", "").strip()


class RowReader:
    """id/ref 参照を解決しながら <row> をストリーミングで読む"""

    def __init__(self, table: str, fields: Iterable[str], multi_fields: Iterable[str] = ()):
        self.table = table
        self.multi_fields = frozenset(multi_fields)
        self.fields = frozenset(fields) | self.multi_fields

    def read(self, data: bytes) -> Iterator[Row]:
        """XMLバイト列から行を順に返す（id キャッシュは呼び出しごとに新規）"""
        id_cache: dict[str, str] = {}
        parser = ET.XMLPullParser(events=("start", "end"))
        current: Row = {}
        in_row = False
        open_elements: list[ET.Element] = []

        def drain() -> Iterator[Row]:
            nonlocal current, in_row
            for event, elem in parser.read_events():
                if event == "start":
                    open_elements.append(elem)
                    if elem.tag == "row":
                        in_row = True
                        current = {}
                    continue

                open_elements.pop()
                if elem.tag == "row":
                    row, current = current, {}
                    release_row(open_elements, elem)
                    if in_row:
                        in_row = False
                        yield row
                    continue

                value = resolve_value(elem, id_cache)
                elem_id = elem.get("id")
                # 最初の定義を優先
                if elem_id is not None and elem_id not in id_cache:
                    id_cache[elem_id] = value

                if in_row and elem.tag in self.fields and value:
                    if elem.tag in self.multi_fields:
                        current.setdefault(elem.tag, []).append(value)
                    else:
                        current.setdefault(elem.tag, value)

        try:
            for start in range(0, len(data), CHUNK_SIZE):
                parser.feed(data[start:start + CHUNK_SIZE])
                yield from drain()
            parser.close()
            yield from drain()
        except ET.ParseError as e:
            raise XMLParsingError(self.table, str(e)) from e

        logger.debug("%s: %d ids cached", self.table, len(id_cache))
