"""
概要信息命令模块
"""

import traceback

from ..file_utils import parse_file_paths
from ...presenter import CallTreePresenter
from ...serialization import load_profile
from ...transforms import get_time_range_including_all_threads


class InfoCommand:
    """打印 profile 的线程概要"""

    def __init__(self):
        self.presenter = CallTreePresenter()

    def run(self, args) -> int:
        print(f"=== Profile 概要 ===")
        print(f"文件模式: {args.file}")

        try:
            file_paths = parse_file_paths(args.file)
        except ValueError as e:
            print(f"错误: 解析文件路径失败 - {e}")
            return 1

        print(f"找到 {len(file_paths)} 个文件")
        exit_code = 0
        for file_path in file_paths:
            try:
                profile = load_profile(file_path)
            except Exception as e:
                print(f"错误: 读取 {file_path} 失败 - {e}")
                traceback.print_exc()
                exit_code = 1
                continue
            if profile is None:
                print(f"错误: 无法识别的 profile 格式: {file_path}")
                exit_code = 1
                continue

            start, end = get_time_range_including_all_threads(profile)
            print(f"\n文件: {file_path}")
            print(f"采样间隔: {profile.interval}ms")
            if start <= end:
                print(f"时间范围: {start:.1f}ms - {end:.1f}ms (共 {end - start:.1f}ms)")
            else:
                print("时间范围: 无采样")
            libs = {lib for thread in profile.threads for lib in thread.libs}
            print(f"共享库: {len(libs)} 个")
            self.presenter.print_markdown_table(self.presenter.build_profile_summary(profile), "线程")

        return exit_code
