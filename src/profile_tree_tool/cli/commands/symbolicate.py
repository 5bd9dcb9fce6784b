"""
符号化命令模块
"""

import asyncio
import time
import traceback
from typing import List, Optional, Tuple

from ..file_utils import default_output_path
from ..validators import validate_cache_options, validate_file
from ...models import Profile
from ...serialization import load_profile, save_profile
from ...symbolication import (
    BreakpadSymbolProvider, ChainedSymbolProvider, FunctionsUpdateBatcher, LibraryState,
    ProfileSymbolicationPipeline, SymbolCache, SymbolProvider, SymbolResolutionCoordinator,
    SymsJsonSymbolProvider, gather_addresses_in_thread,
)

SECONDS_PER_DAY = 24 * 60 * 60


def build_symbol_provider(symbol_dirs: Optional[List[str]], syms_json: Optional[List[str]]) -> SymbolProvider:
    """根据命令行参数组装符号提供者，syms.json 优先于 breakpad 目录"""
    providers: List[SymbolProvider] = [SymsJsonSymbolProvider(path) for path in (syms_json or [])]
    if symbol_dirs:
        providers.append(BreakpadSymbolProvider(symbol_dirs))
    if not providers:
        raise ValueError("请至少指定一个 --symbol-dir 或 --syms-json")
    if len(providers) == 1:
        return providers[0]
    return ChainedSymbolProvider(providers)


class SymbolicateCommand:
    """符号化命令处理器"""

    def run(self, args) -> int:
        """符号化 profile 中的原始地址并保存"""
        output_path = default_output_path(args.file, 'symbolicated', args.output)
        print(f"=== 符号化 ===")
        print(f"文件: {args.file}")
        print(f"符号目录: {', '.join(args.symbol_dir) if args.symbol_dir else '无'}")
        print(f"syms.json: {', '.join(args.syms_json) if args.syms_json else '无'}")
        print(f"缓存数据库: {args.cache_db}")
        print(f"输出文件: {output_path}")
        print()

        try:
            validate_cache_options(args.cache_max_count, args.cache_max_age_days)
            provider = build_symbol_provider(args.symbol_dir, args.syms_json)
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

            symbolicated, failed_libs = asyncio.run(self._symbolicate(profile, provider, args))

            if failed_libs:
                print(f"\n以下 {len(failed_libs)} 个库符号化失败，保留原始地址:")
                for debug_name, debug_id in failed_libs:
                    print(f"  {debug_name} {debug_id}")

            save_profile(symbolicated, output_path)
            total_time = time.time() - start_time
            print(f"\n符号化完成，总耗时: {total_time:.2f} 秒")
            print(f"\n生成的文件:\n  {output_path}")
            return 0

        except Exception as e:
            print(f"错误: {e}")
            traceback.print_exc()
            return 1

    async def _symbolicate(self, profile: Profile, provider: SymbolProvider,
                           args) -> Tuple[Profile, List[Tuple[str, str]]]:
        libs = []
        for thread in profile.threads:
            for lib in gather_addresses_in_thread(thread):
                if lib not in libs:
                    libs.append(lib)
        print(f"待符号化的库: {len(libs)} 个")
        if not libs:
            return profile, []

        cache = SymbolCache(args.cache_db, max_count=args.cache_max_count,
                            max_age=args.cache_max_age_days * SECONDS_PER_DAY)
        async with cache:
            # 每个 profile 一个协调器
            coordinator = SymbolResolutionCoordinator(cache, provider)
            batcher = FunctionsUpdateBatcher()
            pipeline = ProfileSymbolicationPipeline(profile, coordinator, batcher=batcher)
            async for _ in pipeline.snapshots():
                for update in batcher.flush() or []:
                    print(f"  线程 {update.thread_index} ({update.thread.name}): "
                          f"重命名 {update.renamed_count} 个函数, 合并 {update.merged_count} 个函数")

        failed_libs = [(lib.debug_name, lib.debug_id) for lib in libs
                       if coordinator.get_library_state(lib) == LibraryState.FAILED]
        return pipeline.result, failed_libs
