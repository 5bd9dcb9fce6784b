"""
格式转换命令模块
"""

import time
import traceback

from ..file_utils import default_output_path
from ..validators import validate_file
from ...serialization import load_profile, save_profile


class ConvertCommand:
    """把原始 / 旧格式 profile 转换为预处理格式"""

    def run(self, args) -> int:
        output_path = default_output_path(args.file, 'preprocessed', args.output)
        print(f"=== 格式转换 ===")
        print(f"文件: {args.file}")
        print(f"输出文件: {output_path}")
        print()

        if not validate_file(args.file):
            return 1

        try:
            start_time = time.time()
            profile = load_profile(args.file)
            if profile is None:
                print(f"错误: 无法识别的 profile 格式: {args.file}")
                return 1

            save_profile(profile, output_path)
            total_time = time.time() - start_time
            print(f"转换完成: {len(profile.threads)} 个线程，总耗时: {total_time:.2f} 秒")
            print(f"\n生成的文件:\n  {output_path}")
            return 0

        except Exception as e:
            print(f"错误: {e}")
            traceback.print_exc()
            return 1
