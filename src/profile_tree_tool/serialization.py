# -*- coding: utf-8 -*-
"""
预处理格式 profile 的序列化 / 反序列化

序列化时字符串表展开为 string_array，其余表按列输出 (含 length)。
反序列化按 预处理格式 -> raw 格式 -> 旧版 cleopatra 格式 的顺序识别输入，
都不匹配时返回 None 表示不支持的格式。
"""

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .columnar import ColumnarTable
from .legacy_format import convert_old_cleopatra_profile, is_old_cleopatra_format
from .models import (
    FRAME_COLUMNS, FUNC_COLUMNS, FUNC_STACK_COLUMNS, MARKER_COLUMNS, RESOURCE_COLUMNS,
    SAMPLE_COLUMNS, STACK_COLUMNS, Library, Profile, Thread,
)
from .parser import PREPROCESSED_PROFILE_VERSION, is_raw_profile, load_json_file, preprocess_profile
from .string_table import StringTable

logger = logging.getLogger(__name__)

_TABLES = {
    'func_table': FUNC_COLUMNS,
    'resource_table': RESOURCE_COLUMNS,
    'stack_table': STACK_COLUMNS,
    'frame_table': FRAME_COLUMNS,
    'samples': SAMPLE_COLUMNS,
    'markers': MARKER_COLUMNS,
}


def is_preprocessed_profile(profile: Any) -> bool:
    return (isinstance(profile, dict) and isinstance(profile.get('meta'), dict)
            and 'preprocessed_profile_version' in profile['meta'])


def _thread_to_dict(thread: Thread) -> Dict[str, Any]:
    result = {
        'name': thread.name,
        'process_type': thread.process_type,
        'tid': thread.tid,
        'pid': thread.pid,
        'libs': [lib.to_dict() for lib in thread.libs],
        'string_array': thread.string_table.serialize_to_array(),
    }
    for table_name in _TABLES:
        result[table_name] = getattr(thread, table_name).to_dict()
    if thread.func_stack_table is not None:
        result['func_stack_table'] = thread.func_stack_table.to_dict()
    return result


def _thread_from_dict(thread_dict: Dict[str, Any]) -> Thread:
    tables = {
        table_name: ColumnarTable.from_dict(columns, thread_dict.get(table_name, {}))
        for table_name, columns in _TABLES.items()
    }
    func_stack_table = None
    if thread_dict.get('func_stack_table') is not None:
        func_stack_table = ColumnarTable.from_dict(FUNC_STACK_COLUMNS, thread_dict['func_stack_table'])
    return Thread(
        name=thread_dict.get('name', ''),
        process_type=thread_dict.get('process_type', 'default'),
        tid=thread_dict.get('tid'),
        pid=thread_dict.get('pid'),
        libs=[Library(**lib) for lib in thread_dict.get('libs', [])],
        string_table=StringTable(thread_dict.get('string_array', [])),
        func_stack_table=func_stack_table,
        **tables,
    )


def profile_to_dict(profile: Profile) -> Dict[str, Any]:
    meta = dict(profile.meta)
    meta.setdefault('preprocessed_profile_version', PREPROCESSED_PROFILE_VERSION)
    return {'meta': meta, 'threads': [_thread_to_dict(thread) for thread in profile.threads]}


def serialize_profile(profile: Profile) -> str:
    """把 profile 序列化为 JSON 文本"""
    return json.dumps(profile_to_dict(profile), ensure_ascii=False)


def _unserialize_profile(profile_dict: Dict[str, Any]) -> Profile:
    return Profile(
        meta=dict(profile_dict['meta']),
        threads=[_thread_from_dict(thread_dict) for thread_dict in profile_dict.get('threads', [])],
    )


def unserialize_profile_of_arbitrary_format(text_or_object: Union[str, bytes, Dict[str, Any]]) -> Optional[Profile]:
    """
    识别并加载任意支持格式的 profile

    Args:
        text_or_object: JSON 文本或已解析的对象

    Returns:
        Optional[Profile]: 识别失败或转换出错时返回 None
    """
    profile = text_or_object
    if isinstance(profile, (str, bytes)):
        try:
            profile = json.loads(profile)
        except ValueError as e:
            logger.warning(f"profile 不是合法的 JSON: {e}")
            return None

    try:
        if is_preprocessed_profile(profile):
            version = profile['meta']['preprocessed_profile_version']
            if version > PREPROCESSED_PROFILE_VERSION:
                logger.warning(f"不支持的预处理格式版本: {version}")
                return None
            return _unserialize_profile(profile)
        if is_raw_profile(profile):
            return preprocess_profile(profile)
        if is_old_cleopatra_format(profile):
            return convert_old_cleopatra_profile(profile)
    except Exception as e:
        logger.error(f"反序列化 profile 出错: {e}", exc_info=True)
        return None

    logger.warning("无法识别的 profile 格式")
    return None


def load_profile(file_path: Union[str, Path]) -> Optional[Profile]:
    """
    读取 profile 文件 (.json / .json.gz)

    Args:
        file_path: 文件路径

    Returns:
        Optional[Profile]: 不支持的格式返回 None
    """
    file_path = Path(file_path)
    logger.info(f"正在读取 profile: {file_path}")
    return unserialize_profile_of_arbitrary_format(load_json_file(file_path))


def save_profile(profile: Profile, file_path: Union[str, Path]) -> Path:
    """把 profile 以预处理格式写入文件，后缀为 .gz 时压缩"""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    open_func = gzip.open if file_path.suffix == '.gz' else open
    with open_func(file_path, 'wt', encoding='utf-8') as f:
        f.write(serialize_profile(profile))
    logger.info(f"profile 已保存: {file_path}")
    return file_path
