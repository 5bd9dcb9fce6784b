# -*- coding: utf-8 -*-
"""
异常定义
"""


class ProfileTreeError(Exception):
    """本包所有异常的基类"""


class UnknownFieldError(ProfileTreeError, KeyError):
    """访问了表中未声明的字段（编程错误）"""

    def __init__(self, field: str, declared):
        self.field = field
        self.declared = tuple(declared)
        super().__init__(f"未声明的字段: {field}，已声明字段: {', '.join(self.declared)}")

    def __str__(self):
        return self.args[0]


class SymbolCacheError(ProfileTreeError):
    """符号缓存相关错误"""


class SymbolCacheMissError(SymbolCacheError, LookupError):
    """缓存中没有该库的符号表，这是正常的"未缓存"信号"""


class SymbolCacheClosedError(SymbolCacheError):
    """符号缓存已关闭"""


class SymbolProviderError(ProfileTreeError):
    """外部符号提供者获取符号表失败"""


class SymbolicationFailedError(ProfileTreeError):
    """某个库的符号化已失败（在当前协调器生命周期内不再重试）"""

    def __init__(self, debug_name: str, debug_id: str, reason: str = ''):
        self.debug_name = debug_name
        self.debug_id = debug_id
        message = f"库 {debug_name}/{debug_id} 符号化失败"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
