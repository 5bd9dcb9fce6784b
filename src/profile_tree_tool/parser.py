# -*- coding: utf-8 -*-
"""
raw profile 解析器

把 gecko "raw" 格式 ({schema, data} 形式的表 + 地址/符号字符串) 转换为预处理格式：
每个线程的表变为列式表，帧位置字符串被解析为 func / resource。
"""

import gzip
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlsplit

from .columnar import ColumnarTable
from .library_index import LibraryIndex, preprocess_shared_libraries
from .models import (
    FRAME_COLUMNS, FUNC_COLUMNS, MARKER_COLUMNS, RESOURCE_COLUMNS, SAMPLE_COLUMNS, STACK_COLUMNS,
    Library, Profile, ResourceType, Thread,
)
from .string_table import StringTable

logger = logging.getLogger(__name__)

PREPROCESSED_PROFILE_VERSION = 1

_CPP_PATTERNS = [
    re.compile(r'^(.*) \(in ([^)]*)\) (\+ [0-9]+)$'),
    re.compile(r'^(.*) \(in ([^)]*)\) (\(.*:.*\))$'),
    re.compile(r'^(.*) \(in ([^)]*)\)$'),
]
_JS_PATTERNS = [
    re.compile(r'^(.*) \((.*):([0-9]+)\)$'),
    re.compile(r'^()(.*):([0-9]+)$'),
]
_IGNORED_FUNCTION_PREFIX = 'non-virtual thunk to '

# raw 采样字段名 -> 列名
_SAMPLE_FIELD_NAMES = {
    'stack': 'stack',
    'time': 'time',
    'responsiveness': 'responsiveness',
    'rss': 'rss',
    'uss': 'uss',
    'frameNumber': 'frame_number',
    'power': 'power',
}


def load_json_file(file_path: Union[str, Path]) -> Any:
    """读取 .json 或 .json.gz 文件"""
    file_path = Path(file_path)
    open_func = gzip.open if file_path.suffix == '.gz' else open
    with open_func(file_path, 'rt', encoding='utf-8') as f:
        return json.load(f)


def is_raw_profile(profile: Any) -> bool:
    return (isinstance(profile, dict) and 'meta' in profile
            and 'threads' in profile and 'libs' in profile)


def clean_function_name(function_name: str) -> str:
    if function_name.startswith(_IGNORED_FUNCTION_PREFIX):
        return function_name[len(_IGNORED_FUNCTION_PREFIX):]
    return function_name


def get_real_script_uri(url: Optional[str]) -> Optional[str]:
    """JS 文件 URL 可能是以 " -> " 连接的链，只取最后一个"""
    if url:
        return url.split(' -> ')[-1]
    return url


def _get_origin_and_host(script_uri: str) -> Tuple[str, Optional[str]]:
    try:
        parts = urlsplit(script_uri)
    except ValueError:
        return script_uri, None
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        return script_uri, None
    host = parts.netloc.rsplit('@', 1)[-1]
    return f"{parts.scheme}://{host}", host


def to_struct_of_arrays(raw_table: Dict[str, Any]) -> Dict[str, List[Any]]:
    """
    把 {schema, data} 形式的表转换为按列组织的字典

    Args:
        raw_table: schema 为 字段名 -> 列位置，data 为行列表

    Returns:
        Dict[str, List[Any]]: 字段名 -> 值列表，行中缺少该位置时为 None
    """
    schema = raw_table.get('schema', {})
    data = raw_table.get('data', [])
    result = {}
    for field_name, field_index in schema.items():
        result[field_name] = [entry[field_index] if field_index < len(entry) else None for entry in data]
    return result


def _sort_rows_by_field(field_name: str, raw_table: Dict[str, Any]) -> Dict[str, Any]:
    field_index = raw_table.get('schema', {}).get(field_name)
    if field_index is None:
        return raw_table
    def _key(entry):
        value = entry[field_index] if field_index < len(entry) else None
        return (value is None, value if value is not None else 0)
    return dict(raw_table, data=sorted(raw_table.get('data', []), key=_key))


class _FuncTableBuilder:
    """把帧位置字符串解析为 func / resource 行，同一位置复用同一个 func"""

    def __init__(self, string_table: StringTable, libs: Sequence[Library], webhost_resources: bool = True):
        self.string_table = string_table
        self.library_index = LibraryIndex(libs)
        self.webhost_resources = webhost_resources
        self.func_table = ColumnarTable(FUNC_COLUMNS)
        self.resource_table = ColumnarTable(RESOURCE_COLUMNS)
        self._lib_to_resource: Dict[int, int] = {}
        self._lib_name_to_resource: Dict[int, int] = {}
        self._origin_to_resource: Dict[str, int] = {}
        self._location_to_func: Dict[int, int] = {}
        self._cpp_name_to_func: Dict[int, int] = {}

    def func_for_location(self, location_index: Optional[int]) -> Optional[int]:
        if location_index is None:
            return None
        func_index = self._location_to_func.get(location_index)
        if func_index is not None:
            return func_index

        location = self.string_table.get_string(location_index)
        row = {'name': location_index, 'is_js': False}
        cpp_match = None
        if location.startswith('0x'):
            self._parse_address(location, row)
        else:
            cpp_match = self._match(_CPP_PATTERNS, location)
            if cpp_match:
                row['name'] = self.string_table.index_for_string(clean_function_name(cpp_match.group(1)))
                # 同名 C++ 函数共用一个 func
                func_index = self._cpp_name_to_func.get(row['name'])
                if func_index is not None:
                    self._location_to_func[location_index] = func_index
                    return func_index
                row['resource'] = self._lib_name_resource(cpp_match.group(2))
            else:
                js_match = self._match(_JS_PATTERNS, location)
                if js_match:
                    self._parse_js(js_match, row)

        func_index = self.func_table.append(row)
        if cpp_match:
            self._cpp_name_to_func[row['name']] = func_index
        self._location_to_func[location_index] = func_index
        return func_index

    @staticmethod
    def _match(patterns, location: str):
        for pattern in patterns:
            match = pattern.match(location)
            if match:
                return match
        return None

    def _parse_address(self, location: str, row: Dict[str, Any]) -> None:
        try:
            address = int(location[2:], 16)
        except ValueError:
            logger.debug(f"无法解析的地址: {location}")
            return
        lib_index = self.library_index.get_containing_library_index(address)
        if lib_index is None:
            return
        lib = self.library_index[lib_index]
        row['address'] = address - lib.start
        resource = self._lib_to_resource.get(lib_index)
        if resource is None:
            resource = self.resource_table.append({
                'type': ResourceType.LIBRARY,
                'name': self.string_table.index_for_string(lib.debug_name),
                'lib': lib_index,
            })
            self._lib_to_resource[lib_index] = resource
        row['resource'] = resource

    def _lib_name_resource(self, lib_name: str) -> int:
        name_index = self.string_table.index_for_string(lib_name)
        resource = self._lib_name_to_resource.get(name_index)
        if resource is None:
            resource = self.resource_table.append({'type': ResourceType.LIBRARY, 'name': name_index})
            self._lib_name_to_resource[name_index] = resource
        return resource

    def _parse_js(self, js_match, row: Dict[str, Any]) -> None:
        row['is_js'] = True
        script_uri = get_real_script_uri(js_match.group(2))
        if self.webhost_resources:
            origin, host = _get_origin_and_host(script_uri)
        else:
            origin, host = script_uri, None
        resource = self._origin_to_resource.get(origin)
        if resource is None:
            if host:
                resource = self.resource_table.append({
                    'type': ResourceType.WEBHOST,
                    'name': self.string_table.index_for_string(origin),
                    'host': self.string_table.index_for_string(host),
                })
            else:
                resource = self.resource_table.append({
                    'type': ResourceType.URL,
                    'name': self.string_table.index_for_string(script_uri),
                })
            self._origin_to_resource[origin] = resource
        row['resource'] = resource
        function_name = js_match.group(1)
        if not function_name:
            # 整个脚本的顶层求值没有函数名
            function_name = f"(root scope) {script_uri}"
        row['name'] = self.string_table.index_for_string(function_name)
        row['file_name'] = self.string_table.index_for_string(script_uri)
        row['line_number'] = int(js_match.group(3))


def preprocess_thread(raw_thread: Dict[str, Any], libs: Sequence[Library],
                      webhost_resources: bool = True) -> Thread:
    """
    把一个 raw 线程转换为预处理格式

    Args:
        raw_thread: raw 格式的线程
        libs: 按 start 排序的库列表
        webhost_resources: 是否把 http(s) 脚本归入 webhost 资源 (否则一律为 url 资源)

    Returns:
        Thread: 预处理后的线程
    """
    string_table = StringTable(raw_thread.get('stringTable', []))
    frames = to_struct_of_arrays(raw_thread['frameTable'])
    stacks = to_struct_of_arrays(raw_thread['stackTable'])
    samples = to_struct_of_arrays(raw_thread['samples'])
    raw_markers = raw_thread.get('markers') or {'schema': {'name': 0, 'time': 1, 'data': 2}, 'data': []}
    markers = to_struct_of_arrays(_sort_rows_by_field('time', raw_markers))

    builder = _FuncTableBuilder(string_table, libs, webhost_resources)
    locations = frames.get('location', [])
    frame_funcs = [builder.func_for_location(location) for location in locations]
    frame_addresses = [None if func is None else builder.func_table.get(func, 'address') for func in frame_funcs]

    frame_length = len(locations)
    frame_table = ColumnarTable.from_columns(FRAME_COLUMNS, {
        'func': frame_funcs,
        'address': frame_addresses,
        'implementation': frames.get('implementation', [None] * frame_length),
        'line': frames.get('line', [None] * frame_length),
        'category': frames.get('category', [None] * frame_length),
        'optimizations': frames.get('optimizations', [None] * frame_length),
    }, length=frame_length)

    stack_length = len(raw_thread['stackTable'].get('data', []))
    stack_table = ColumnarTable.from_columns(STACK_COLUMNS, {
        'prefix': stacks.get('prefix', [None] * stack_length),
        'frame': stacks.get('frame', [None] * stack_length),
    }, length=stack_length)

    sample_length = len(raw_thread['samples'].get('data', []))
    sample_data = {}
    for raw_name, values in samples.items():
        column_name = _SAMPLE_FIELD_NAMES.get(raw_name)
        if column_name is None:
            logger.debug(f"忽略未知的采样字段: {raw_name}")
            continue
        sample_data[column_name] = values
    sample_table = ColumnarTable.from_columns(SAMPLE_COLUMNS, sample_data, length=sample_length)

    marker_length = len(raw_markers.get('data', []))
    marker_names = markers.get('name', [None] * marker_length)
    marker_table = ColumnarTable.from_columns(MARKER_COLUMNS, {
        'name': [string_table.index_for_string('') if name is None else name for name in marker_names],
        'time': markers.get('time', [None] * marker_length),
        'data': markers.get('data', [None] * marker_length),
    }, length=marker_length)

    logger.debug(f"线程 {raw_thread.get('name')}: {len(builder.func_table)} 个函数, "
                 f"{len(builder.resource_table)} 个资源")
    return Thread(
        name=raw_thread.get('name', ''),
        process_type=raw_thread.get('processType') or '',
        tid=raw_thread.get('tid'),
        pid=raw_thread.get('pid'),
        libs=list(libs),
        string_table=string_table,
        func_table=builder.func_table,
        resource_table=builder.resource_table,
        stack_table=stack_table,
        frame_table=frame_table,
        samples=sample_table,
        markers=marker_table,
    )


def adjust_sample_timestamps(samples: ColumnarTable, delta: float) -> ColumnarTable:
    return samples.transform({'time': lambda time: time + delta})


def adjust_marker_timestamps(markers: ColumnarTable, delta: float) -> ColumnarTable:
    """调整 time 以及 data 中的 startTime / endTime"""
    def _adjust_data(data_column):
        adjusted = []
        for data in data_column.tolist():
            if not data:
                adjusted.append(data)
                continue
            data = dict(data)
            if data.get('startTime') is not None:
                data['startTime'] += delta
            if data.get('endTime') is not None:
                data['endTime'] += delta
            adjusted.append(data)
        return adjusted

    return markers.transform({'time': lambda time: time + delta, 'data': _adjust_data})


def preprocess_profile(raw_profile: Dict[str, Any]) -> Profile:
    """
    把 raw 格式的 profile 转换为预处理格式

    子进程 profile 以 JSON 字符串形式嵌在 threads 中，其时间戳按两边 startTime 的差值对齐到父进程。

    Args:
        raw_profile: raw 格式的 profile

    Returns:
        Profile: 预处理后的 profile
    """
    meta = raw_profile.get('meta', {})
    libs = preprocess_shared_libraries(raw_profile.get('libs', []))
    threads = []

    for thread_or_subprocess in raw_profile['threads']:
        if isinstance(thread_or_subprocess, str):
            subprocess_profile = json.loads(thread_or_subprocess)
            subprocess_libs = preprocess_shared_libraries(subprocess_profile.get('libs', []))
            delta = subprocess_profile['meta'].get('startTime', 0) - meta.get('startTime', 0)
            for thread_index, raw_thread in enumerate(subprocess_profile['threads']):
                thread = preprocess_thread(raw_thread, subprocess_libs)
                thread.samples = adjust_sample_timestamps(thread.samples, delta)
                thread.markers = adjust_marker_timestamps(thread.markers, delta)
                if thread.name == 'Content':
                    thread.name = 'GeckoMain' if thread_index == 0 else 'Unknown'
                    thread.process_type = thread.process_type or 'tab'
                threads.append(thread)
            logger.info(f"合并子进程 profile: {len(subprocess_profile['threads'])} 个线程, 时间偏移 {delta}ms")
        else:
            thread = preprocess_thread(thread_or_subprocess, libs)
            thread.process_type = thread.process_type or 'default'
            threads.append(thread)

    result_meta = dict(meta)
    result_meta['preprocessed_profile_version'] = PREPROCESSED_PROFILE_VERSION
    logger.info(f"预处理完成: {len(threads)} 个线程, {len(libs)} 个共享库")
    return Profile(meta=result_meta, threads=threads)
