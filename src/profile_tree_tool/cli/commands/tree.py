"""
调用树命令模块
"""

import re
import time
import traceback
from pathlib import Path

from ..file_utils import profile_stem
from ..validators import parse_thread_indices, parse_time_range, validate_file, validate_output_formats
from ...call_tree import CallTree
from ...models import Thread
from ...presenter import CallTreePresenter
from ...serialization import load_profile
from ...transforms import (
    filter_thread_to_js_only, filter_thread_to_range, filter_thread_to_search_string, invert_callstack,
)

MARKDOWN_COLUMNS = ['name', 'lib', 'total_time_ms', 'self_time_ms', 'total_percent']


def _safe_name(name: str) -> str:
    return re.sub(r'[^\w.-]+', '_', name).strip('_') or 'thread'


class TreeCommand:
    """调用树命令处理器"""

    def __init__(self):
        self.presenter = CallTreePresenter()

    def run(self, args) -> int:
        """为 profile 中的线程生成调用树报告"""
        print(f"=== 调用树分析 ===")
        print(f"文件: {args.file}")
        print(f"线程: {args.threads or 'all'}")
        print(f"只看 JS: {args.js_only}")
        print(f"搜索: {args.search if args.search else '无'}")
        print(f"时间范围: {args.range if args.range else '全部'}")
        print(f"反转调用栈: {args.invert}")
        print(f"输出格式: {args.output_format}")
        print(f"输出目录: {args.output_dir}")
        print()

        try:
            formats = validate_output_formats(args.output_format)
            time_range = parse_time_range(args.range)
        except ValueError as e:
            print(f"错误: 参数验证失败 - {e}")
            return 1

        if not validate_file(args.file):
            return 1

        try:
            start_time = time.time()
            profile = load_profile(args.file)
            if profile is None:
                print(f"错误: 无法识别的 profile 格式: {args.file}")
                return 1

            try:
                thread_indices = parse_thread_indices(args.threads, len(profile.threads))
            except ValueError as e:
                print(f"错误: 线程选择失败 - {e}")
                return 1

            output_dir = Path(args.output_dir)
            generated_files = []
            for thread_index in thread_indices:
                thread = self._prepare_thread(profile.threads[thread_index], args, time_range)
                call_tree = CallTree(thread, interval=profile.interval, js_only=args.js_only)
                print(f"线程 {thread_index} ({thread.name}): {call_tree.node_count} 个节点, "
                      f"总时间 {call_tree.root_total_time:.1f}ms")

                if args.print_tree:
                    call_tree.print_tree(max_depth=args.max_depth if args.max_depth is not None else 10)

                rows = self.presenter.build_rows(call_tree, max_depth=args.max_depth, min_percent=args.min_percent)
                title = f"线程 {thread_index}: {thread.name}"
                if args.print_markdown:
                    self.presenter.print_markdown_table(rows, title, columns=MARKDOWN_COLUMNS)

                base_name = f"{profile_stem(args.file)}_{thread_index}_{_safe_name(thread.name)}_call_tree"
                generated_files.extend(
                    self.presenter.generate_output_files(rows, str(output_dir), base_name, formats=formats))

            total_time = time.time() - start_time
            print(f"\n分析完成，总耗时: {total_time:.2f} 秒")

            print("\n生成的文件:")
            for file_path in generated_files:
                print(f"  {file_path}")

            return 0

        except Exception as e:
            print(f"错误: {e}")
            traceback.print_exc()
            return 1

    @staticmethod
    def _prepare_thread(thread: Thread, args, time_range) -> Thread:
        if time_range is not None:
            thread = filter_thread_to_range(thread, *time_range)
        if args.js_only:
            thread = filter_thread_to_js_only(thread)
        if args.search:
            thread = filter_thread_to_search_string(thread, args.search)
        if args.invert:
            thread = invert_callstack(thread)
        return thread
