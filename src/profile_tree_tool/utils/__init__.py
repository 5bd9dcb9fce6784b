"""
工具函数
"""

from .time_code import time_code

__all__ = ['time_code']
