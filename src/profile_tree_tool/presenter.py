# -*- coding: utf-8 -*-
"""
调用树结果展示

把调用树展开为行，输出 JSON / CSV / XLSX 文件，或在 stdout 中打印 markdown 表格。
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .call_tree import CallTree
from .models import Profile
from .symbolication.coordinator import gather_addresses_in_thread

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('json', 'csv', 'xlsx')


class CallTreePresenter:
    """调用树展示器"""

    def build_rows(self, call_tree: CallTree, max_depth: Optional[int] = None,
                   min_percent: float = 0.0) -> List[Dict[str, Any]]:
        """
        按展示顺序把调用树展开为行

        Args:
            call_tree: 调用树
            max_depth: 最大深度 (0 表示只输出根节点)，None 表示不限制
            min_percent: 低于该占比的节点 (及其子树) 不输出

        Returns:
            List[Dict[str, Any]]: 每个节点一行
        """
        rows = []
        root_total = call_tree.root_total_time
        pending = list(reversed(call_tree.get_roots()))
        while pending:
            node = pending.pop()
            times = call_tree.get_node_times(node)
            percent = 100 * times.total_time / root_total if root_total else 0.0
            if percent < min_percent:
                continue
            display = call_tree.get_node(node)
            depth = call_tree.get_depth(node)
            rows.append({
                'depth': depth,
                'name': display.name,
                'lib': display.lib,
                'total_time_ms': times.total_time,
                'self_time_ms': times.self_time,
                'total_percent': percent,
                'call_stack': ' -> '.join(call_tree.get_call_path(node)),
            })
            if max_depth is None or depth < max_depth:
                pending.extend(reversed(call_tree.get_children(node)))
        return rows

    def build_profile_summary(self, profile: Profile) -> List[Dict[str, Any]]:
        """每个线程一行的概要信息"""
        rows = []
        for thread_index, thread in enumerate(profile.threads):
            unsymbolicated = sum(len(funcs) for funcs in gather_addresses_in_thread(thread).values())
            rows.append({
                'thread_index': thread_index,
                'name': thread.name,
                'process_type': thread.process_type,
                'samples': len(thread.samples),
                'markers': len(thread.markers),
                'stacks': len(thread.stack_table),
                'funcs': len(thread.func_table),
                'libs': len(thread.libs),
                'unsymbolicated_funcs': unsymbolicated,
            })
        return rows

    def generate_output_files(self, rows: List[Dict[str, Any]], output_dir: str, base_name: str,
                              formats: Sequence[str] = ('json', 'xlsx')) -> List[Path]:
        """
        生成输出文件

        Args:
            rows: 数据行
            output_dir: 输出目录
            base_name: 文件名 (不含后缀)
            formats: 输出格式，支持 json / csv / xlsx

        Returns:
            List[Path]: 生成的文件路径列表
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        generated_files = []

        if 'json' in formats:
            json_file = output_path / f"{base_name}.json"
            with open(json_file, 'w', encoding='utf-8') as f:
                json.dump(rows, f, indent=2, ensure_ascii=False)
            print(f"JSON 文件已生成: {json_file}")
            generated_files.append(json_file)

        if not rows:
            if 'csv' in formats or 'xlsx' in formats:
                print("没有数据可以生成表格文件")
            return generated_files

        df = pd.DataFrame(rows)
        if 'csv' in formats:
            csv_file = output_path / f"{base_name}.csv"
            df.to_csv(csv_file, index=False, encoding='utf-8')
            print(f"CSV 文件已生成: {csv_file}")
            generated_files.append(csv_file)
        if 'xlsx' in formats:
            xlsx_file = output_path / f"{base_name}.xlsx"
            with pd.ExcelWriter(xlsx_file, engine='openpyxl') as writer:
                df.to_excel(writer, sheet_name='call_tree', index=False)
            print(f"Excel 文件已生成: {xlsx_file}")
            generated_files.append(xlsx_file)
        return generated_files

    def print_markdown_table(self, rows: List[Dict[str, Any]], title: str,
                             columns: Optional[Sequence[str]] = None):
        """在stdout中以markdown格式打印表格"""
        if not rows:
            print(f"\n## {title}\n\n无数据可显示\n")
            return

        print(f"\n## {title}\n")
        columns = list(columns or rows[0].keys())
        print("| " + " | ".join(columns) + " |")
        print("| " + " | ".join(["---"] * len(columns)) + " |")

        for row in rows:
            values = []
            for col in columns:
                value = row.get(col, "")
                if isinstance(value, float):
                    if col.endswith('_percent'):
                        values.append(f"{value:.1f}%")
                    else:
                        values.append(f"{value:.1f}")
                elif col == 'name' and 'depth' in row:
                    # 用缩进表示层级
                    values.append("&nbsp;&nbsp;" * row['depth'] + str(value).replace('|', '\\|'))
                else:
                    values.append(str(value).replace('|', '\\|'))
            print("| " + " | ".join(values) + " |")
        print()
