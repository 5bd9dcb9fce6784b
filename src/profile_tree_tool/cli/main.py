"""
CLI主模块
"""

import argparse
import logging
import sys

from .commands import ConvertCommand, InfoCommand, SymbolicateCommand, TreeCommand
from ..symbolication.symbol_cache import DEFAULT_MAX_AGE, DEFAULT_MAX_COUNT

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def parse_arguments(argv=None):
    """解析命令行参数"""
    parser = argparse.ArgumentParser(
        description="Profile Tree Tool - 采样 profile 调用树与符号化工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  # 查看 profile 概要 (支持原始格式、预处理格式和旧 cleopatra 格式)
  profile-tree-tool info profile.json
  profile-tree-tool info "profiles/*.json.gz"

  # 生成所有线程的调用树，输出 json 和 xlsx
  profile-tree-tool tree profile.json --output-format json,xlsx

  # 只看线程 0，只保留 JS 帧，并在stdout中打印markdown表格
  profile-tree-tool tree profile.json --threads 0 --js-only --print-markdown

  # 只看 1000ms 到 2000ms 之间的采样，反转调用栈
  profile-tree-tool tree profile.json --range 1000,2000 --invert --max-depth 3

  # 只保留栈中包含 "paint" 的采样，打印树形结构
  profile-tree-tool tree profile.json --search paint --print-tree

  # 使用 breakpad 符号目录符号化
  profile-tree-tool symbolicate profile.json --symbol-dir ./symbols -o profile.symbolicated.json

  # 使用 syms.json 并指定持久化的符号缓存
  profile-tree-tool symbolicate profile.json --syms-json libxul.syms.json --cache-db ~/.cache/symbols.db

  # 转换为预处理格式
  profile-tree-tool convert raw_profile.json -o profile.preprocessed.json.gz
        """
    )
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='日志级别 (默认: WARNING)')

    subparsers = parser.add_subparsers(dest='command', help='可用命令')

    # tree 命令 - 生成调用树报告
    tree_parser = subparsers.add_parser('tree', help='生成调用树报告')
    tree_parser.add_argument('file', help='profile 文件路径 (.json / .json.gz)')
    tree_parser.add_argument('--threads', default='all',
                             help='线程下标，逗号分隔，如 "0,2" (默认: all)')
    tree_parser.add_argument('--js-only', action='store_true', help='只保留 JS 帧 (默认: False)')
    tree_parser.add_argument('--search', default='', help='只保留栈中函数名包含该字符串的采样 (大小写不敏感)')
    tree_parser.add_argument('--range', default='', help='采样时间范围 "start,end"，单位毫秒，左闭右开')
    tree_parser.add_argument('--invert', action='store_true', help='反转调用栈，叶子函数作为根 (默认: False)')
    tree_parser.add_argument('--max-depth', type=int, default=None, help='最大输出深度 (默认: 不限制)')
    tree_parser.add_argument('--min-percent', type=float, default=0.0,
                             help='总时间占比低于该值的节点不输出 (默认: 0)')
    tree_parser.add_argument('--print-tree', action='store_true', help='在stdout中打印树形结构 (默认: False)')
    tree_parser.add_argument('--print-markdown', action='store_true',
                             help='是否在stdout中以markdown格式打印表格 (默认: False)')
    tree_parser.add_argument('--output-format', default='json,xlsx',
                             help='输出格式，逗号分隔，支持 json, csv, xlsx (默认: json,xlsx)')
    tree_parser.add_argument('--output-dir', default='.', help='输出目录 (默认: 当前目录)')

    # symbolicate 命令 - 符号化
    symbolicate_parser = subparsers.add_parser('symbolicate', help='把原始地址符号化为函数名')
    symbolicate_parser.add_argument('file', help='profile 文件路径 (.json / .json.gz)')
    symbolicate_parser.add_argument('--symbol-dir', action='append', default=None,
                                    help='breakpad 符号目录 (<dir>/<debug_name>/<debug_id>/<name>.sym)，可重复指定')
    symbolicate_parser.add_argument('--syms-json', action='append', default=None,
                                    help='samply 风格的 .syms.json 文件，可重复指定')
    symbolicate_parser.add_argument('--cache-db', default=':memory:',
                                    help='符号缓存 sqlite 数据库路径 (默认: 仅内存)')
    symbolicate_parser.add_argument('--cache-max-count', type=int, default=DEFAULT_MAX_COUNT,
                                    help=f'符号缓存最多保留的库数量 (默认: {DEFAULT_MAX_COUNT})')
    symbolicate_parser.add_argument('--cache-max-age-days', type=float,
                                    default=DEFAULT_MAX_AGE / (24 * 60 * 60),
                                    help='符号缓存条目最长保留天数 (默认: 14)')
    symbolicate_parser.add_argument('-o', '--output', default=None,
                                    help='输出文件路径 (默认: <输入文件名>.symbolicated.json)')

    # convert 命令 - 转换为预处理格式
    convert_parser = subparsers.add_parser('convert', help='把原始格式或旧格式 profile 转换为预处理格式')
    convert_parser.add_argument('file', help='profile 文件路径 (.json / .json.gz)')
    convert_parser.add_argument('-o', '--output', default=None,
                                help='输出文件路径 (默认: <输入文件名>.preprocessed.json)')

    # info 命令 - 概要信息
    info_parser = subparsers.add_parser('info', help='打印 profile 的线程概要')
    info_parser.add_argument('file', help='profile 文件路径、目录或 glob 模式')

    return parser.parse_args(argv)


def main(argv=None):
    """主函数"""
    args = parse_arguments(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    if not args.command:
        print("错误: 请指定命令 (tree, symbolicate, convert, info)")
        print("使用 --help 查看帮助信息")
        return 1

    if args.command == 'tree':
        command = TreeCommand()
    elif args.command == 'symbolicate':
        command = SymbolicateCommand()
    elif args.command == 'convert':
        command = ConvertCommand()
    elif args.command == 'info':
        command = InfoCommand()
    else:
        print(f"错误: 未知命令: {args.command}")
        return 1
    return command.run(args)


if __name__ == "__main__":
    sys.exit(main())
