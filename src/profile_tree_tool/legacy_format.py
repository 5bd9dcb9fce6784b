# -*- coding: utf-8 -*-
"""
旧版 cleopatra profile 格式导入

旧格式 (format == 'profileJSONWithSymbolicationTable,1') 的每个采样直接给出帧列表
(符号表下标) 和 extraInfo。这里先把它展开为 raw 格式的线程，再复用 raw 线程的预处理逻辑。
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from .parser import PREPROCESSED_PROFILE_VERSION, preprocess_thread
from .models import Profile
from .string_table import StringTable

logger = logging.getLogger(__name__)

LEGACY_FORMAT = 'profileJSONWithSymbolicationTable,1'

_SAMPLE_SCHEMA = {'stack': 0, 'time': 1, 'responsiveness': 2, 'frameNumber': 3, 'rss': 4, 'uss': 5}
_FRAME_SCHEMA = {'location': 0, 'implementation': 1, 'optimizations': 2, 'line': 3, 'category': 4}


def is_old_cleopatra_format(profile: Any) -> bool:
    return isinstance(profile, dict) and profile.get('format') == LEGACY_FORMAT


def _array_from_array_like_object(obj: Any) -> List[Any]:
    """{"0": a, "2": b} -> [a, None, b]；本身是列表时原样返回"""
    if isinstance(obj, list):
        return obj
    result: List[Any] = []
    for index, value in obj.items():
        index = int(index)
        if index >= len(result):
            result.extend([None] * (index + 1 - len(result)))
        result[index] = value
    return result


def _thread_name_and_process_type(name: str) -> Tuple[str, str]:
    if name == 'Content':
        return 'GeckoMain', 'tab'
    if name == 'Plugin':
        return name, 'plugin'
    return name, 'default'


def _convert_thread(thread: Dict[str, Any], symbolication_table: List[Optional[str]]) -> Dict[str, Any]:
    """把旧格式线程展开为 raw 格式线程"""
    string_table = StringTable('' if symbol is None else symbol for symbol in symbolication_table)
    frame_rows: List[List[Any]] = []
    stack_rows: List[List[Any]] = []
    sample_rows: List[List[Any]] = []
    marker_rows: List[List[Any]] = []
    frame_map: Dict[int, int] = {}
    stack_map: Dict[Tuple[Optional[int], int], int] = {}

    for sample in thread.get('samples', []):
        prefix = None
        for symbol_index in sample.get('frames', []):
            frame_index = frame_map.get(symbol_index)
            if frame_index is None:
                frame_index = len(frame_rows)
                frame_rows.append([symbol_index, None, None, None, None])
                frame_map[symbol_index] = frame_index
            stack_key = (prefix, frame_index)
            stack_index = stack_map.get(stack_key)
            if stack_index is None:
                stack_index = len(stack_rows)
                stack_rows.append([prefix, frame_index])
                stack_map[stack_key] = stack_index
            prefix = stack_index
        extra_info = sample.get('extraInfo', {})
        sample_rows.append([
            prefix,
            extra_info.get('time'),
            extra_info.get('responsiveness'),
            extra_info.get('frameNumber'),
            extra_info.get('rss'),
            extra_info.get('uss'),
        ])

    for marker in thread.get('markers', []):
        marker_rows.append([
            string_table.index_for_string(marker.get('name', '')),
            marker.get('time'),
            marker.get('data'),
        ])

    name, process_type = _thread_name_and_process_type(thread.get('name', ''))
    return {
        'name': name,
        'processType': process_type,
        'stringTable': string_table.serialize_to_array(),
        'frameTable': {'schema': _FRAME_SCHEMA, 'data': frame_rows},
        'stackTable': {'schema': {'prefix': 0, 'frame': 1}, 'data': stack_rows},
        'samples': {'schema': _SAMPLE_SCHEMA, 'data': sample_rows},
        'markers': {'schema': {'name': 0, 'time': 1, 'data': 2}, 'data': marker_rows},
    }


def convert_old_cleopatra_profile(profile: Dict[str, Any]) -> Profile:
    """
    转换旧版 cleopatra profile

    Args:
        profile: 旧格式 profile，包含 meta、profileJSON.threads 和 symbolicationTable

    Returns:
        Profile: 预处理格式的 profile (没有库信息，脚本一律作为 url 资源)
    """
    threads = _array_from_array_like_object(profile['profileJSON']['threads'])
    symbolication_table = _array_from_array_like_object(profile.get('symbolicationTable', {}))

    converted = []
    for thread in threads:
        if thread is None:
            continue
        converted.append(preprocess_thread(_convert_thread(thread, symbolication_table), [],
                                           webhost_resources=False))

    meta = dict(profile.get('meta', {}))
    meta['preprocessed_profile_version'] = PREPROCESSED_PROFILE_VERSION
    logger.info(f"旧版 cleopatra profile 转换完成: {len(converted)} 个线程")
    return Profile(meta=meta, threads=converted)
