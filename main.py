import pandas as pd
import os
import time
import logging
import io
import contextlib
import traceback

from expansion.pipeline import ExpansionPipeline
from expansion.metrics import InMemoryMetricsSink
from expansion.report import print_report, result_to_frames, summary_to_json
from expansion.config import *

# --- 仅定义常量 (不要在这里做文件操作！) ---
LOG_DIR = "./logs"
LOG_FILE = os.path.join(LOG_DIR, "expansion_run.log")
OUTPUT_SUMMARY = './data/output_summary.json'
OUTPUT_METRICS = './data/output_metrics.csv'


def read_table(path):
    """兼容 tab / 逗号分隔"""
    df = pd.read_csv(path, sep='\t')
    if COL_LAT not in df.columns:
        df = pd.read_csv(path, sep=',')
    return df


def run_pipeline(candidates_df, stores_df, overrides, target_count):
    """运行一次完整流水线，stdout 捕获后交给主进程写日志"""
    log_capture = io.StringIO()
    result = None
    metrics = InMemoryMetricsSink()

    with contextlib.redirect_stdout(log_capture):
        try:
            print(f"[{time.strftime('%H:%M:%S')}] === 开始选址: 候选 {len(candidates_df)} | 门店 {len(stores_df)} ===")
            pipeline = ExpansionPipeline(overrides, metrics=metrics)
            result = pipeline.run(candidates_df, stores_df, target_count=target_count)
            print(f"[{time.strftime('%H:%M:%S')}] === 处理完成: 入选 {len(result.selected)} ===")
        except Exception as e:
            print(f"❌ 异常: {str(e)}")
            traceback.print_exc(file=log_capture)

    return result, metrics, log_capture.getvalue()


def main():
    if not os.path.exists(LOG_DIR):
        os.makedirs(LOG_DIR)

    if os.path.exists(LOG_FILE):
        try:
            os.remove(LOG_FILE)
        except PermissionError:
            print("⚠️ 警告: 无法删除旧日志文件(可能被占用)，将追加写入。")

    logging.basicConfig(
        filename=LOG_FILE,
        level=logging.INFO,
        format="%(message)s",
        encoding='utf-8'
    )

    start_time = time.time()
    print(f"🚀 启动门店扩张选址系统...")
    print(f"📂 日志存放于: {LOG_FILE}")

    if not os.path.exists(CANDIDATES_PATH):
        print(f"❌ 找不到文件: {CANDIDATES_PATH}")
        return

    print(f"⏳ 正在读取数据...")
    try:
        candidates_df = read_table(CANDIDATES_PATH)
        stores_df = read_table(STORES_PATH) if os.path.exists(STORES_PATH) else pd.DataFrame()
    except Exception as e:
        print(f"❌ 读取失败: {e}")
        return
    print(f"✅ 数据加载完毕: 候选 {len(candidates_df)} 条, 门店 {len(stores_df)} 条")

    result, metrics, log_str = run_pipeline(candidates_df, stores_df, {'random_seed': RANDOM_SEED}, TARGET_COUNT)
    logging.info(log_str)

    if result is None:
        print(f"❌ 运行失败，请检查 {LOG_FILE}")
        return

    print("\n💾 正在保存结果...")
    selected_df, suppressed_df, ledger_df = result_to_frames(result)
    selected_df.to_csv(OUTPUT_SELECTED, index=False, encoding='utf-8-sig')
    suppressed_df.to_csv(OUTPUT_SUPPRESSED, index=False, encoding='utf-8-sig')
    ledger_df.to_csv(OUTPUT_LEDGER, index=False, encoding='utf-8-sig')
    metrics.to_frame().to_csv(OUTPUT_METRICS, index=False, encoding='utf-8-sig')
    with open(OUTPUT_SUMMARY, 'w', encoding='utf-8') as f:
        f.write(summary_to_json(result.summary))

    print_report(result, duration=time.time() - start_time)
    print(f"📂 结果保存: data/")
    print(f"📝 运行日志: {LOG_FILE}")


if __name__ == "__main__":
    main()
