import pandas as pd
import os
import io
import contextlib
import traceback
from concurrent.futures import ProcessPoolExecutor, as_completed
from tqdm import tqdm

from expansion.pipeline import ExpansionPipeline
from expansion.config import *

# --- 实验配置 ---
EXPERIMENT_DRIVE_MINUTES = [5, 10, 15, 20]
EXPERIMENT_SEEDS = [RANDOM_SEED]


def run_single_setting(drive_minutes, seed, candidates_df, stores_df, target_count):
    log_capture = io.StringIO()

    # 捕获标准输出，但保留错误堆栈
    with contextlib.redirect_stdout(log_capture):
        try:
            pipeline = ExpansionPipeline({'drive_time_minutes': drive_minutes, 'random_seed': seed})
            result = pipeline.run(candidates_df, stores_df, target_count=target_count)
        except Exception:
            return drive_minutes, seed, None, traceback.format_exc()

    summary = result.summary
    counts = summary['stage_counts']
    stats = summary['drive_time_stats']
    return drive_minutes, seed, {
        "Drive_Minutes": drive_minutes,
        "Seed": seed,
        "Pool": counts['pool'],
        "After_NMS": counts['after_nms'],
        "Suppressed": len(result.suppressed),
        "Clusters": len(result.clusters),
        "Selected": counts['selected'],
        "Regions": sum(1 for n in result.region_distribution.values() if n > 0),
        "Fairness": round(summary['fairness_score'], 3),
        "Avg_NN_Drive": round(stats['avg_nearest_neighbor_drive_time'], 2),
    }, None


def main():
    if not os.path.exists(CANDIDATES_PATH):
        print(f"❌ 找不到文件: {CANDIDATES_PATH}")
        return
    try:
        candidates_df = pd.read_csv(CANDIDATES_PATH)
        stores_df = pd.read_csv(STORES_PATH) if os.path.exists(STORES_PATH) else pd.DataFrame()
    except Exception as e:
        print(f"❌ 读取失败: {e}")
        return

    tasks = [(m, s) for m in EXPERIMENT_DRIVE_MINUTES for s in EXPERIMENT_SEEDS]
    max_workers = max(1, min((os.cpu_count() or 2) - 1, len(tasks)))
    print(f"\n🧪 [实验开始] 车程阈值: {EXPERIMENT_DRIVE_MINUTES} min, 种子: {EXPERIMENT_SEEDS}")

    results = []
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(run_single_setting, m, s, candidates_df, stores_df, TARGET_COUNT): (m, s)
            for m, s in tasks
        }

        pbar = tqdm(as_completed(futures), total=len(tasks), unit="run", ncols=80)
        for future in pbar:
            drive_minutes, seed, stats, error_msg = future.result()
            if error_msg:
                print(f"\n❌ {drive_minutes}min / seed={seed} 报错:\n{error_msg}")
                continue
            results.append(stats)
            pbar.set_postfix_str(f"Last: {drive_minutes}min ({stats['Selected']}站)")

    if not results:
        print("❌ 没有成功的实验轮次")
        return

    print("\n" + "=" * 60)
    print("📊 消融实验最终报告")
    print("=" * 60)
    report = pd.DataFrame(results).sort_values(["Drive_Minutes", "Seed"])
    print(report.to_string(index=False))


if __name__ == "__main__":
    main()
