import json

import pandas as pd

TYPE_LABELS = {'city': '城市', 'town': '镇', 'village': '村'}


def build_rationale(candidate):
    """
    规则生成的选址理由 (人口 / 空白 / 锚点 / 周边业绩 四个档位)
    作为默认的 enricher，调用方可以替换
    """
    pop = candidate.population
    nearest = candidate.nearest_store_distances[0] if candidate.nearest_store_distances else None
    anchors = candidate.anchor_count
    turnover = candidate.nearby_turnover_mean

    parts = [f"{candidate.name} ({TYPE_LABELS.get(candidate.settlement_type, candidate.settlement_type)}) 具备扩张潜力。"]

    if pop > 100000:
        parts.append(f"人口基数大 (约 {round(pop / 1000)}k)，市场空间充足。")
    elif pop > 20000:
        parts.append(f"人口规模中等 (约 {round(pop / 1000)}k)，市场规模良好。")
    else:
        parts.append(f"社区较小 (约 {round(pop / 1000)}k)，适合聚焦型门店。")

    if nearest is None:
        parts.append("周边没有已开门店，属于完全空白市场。")
    elif nearest > 15000:
        parts.append(f"服务空白明显，最近门店 {round(nearest / 1000)}km。")
    elif nearest > 8000:
        parts.append(f"存在一定服务空白，最近门店 {round(nearest / 1000)}km。")
    else:
        parts.append(f"竞争区域，最近门店仅 {round(nearest / 1000)}km，但市场规模支撑扩张。")

    if anchors > 10:
        parts.append(f"商业生态成熟，{anchors} 个锚点 (商场/车站/超市) 带来客流。")
    elif anchors > 5:
        parts.append(f"商业活跃度中等，{anchors} 个锚点提供客源。")
    else:
        parts.append(f"商业仍在发展，{anchors} 个锚点，具备增长空间。")

    if turnover > 800000:
        parts.append(f"周边门店业绩优秀 (平均 {round(turnover / 1000)}k)，市场条件好。")
    elif turnover > 500000:
        parts.append(f"周边门店业绩稳健 (平均 {round(turnover / 1000)}k)，市场可行。")
    else:
        parts.append("周边业绩一般，可能存在未被满足的需求。")

    return ''.join(parts)


def candidate_to_row(candidate, rationale=None):
    score = candidate.score
    dq = candidate.data_quality
    return {
        'id': candidate.id,
        'name': candidate.name,
        'source': candidate.source,
        'lat': candidate.lat,
        'lng': candidate.lng,
        'region_code': candidate.region_code,
        'settlement_type': candidate.settlement_type,
        'population': candidate.population,
        'population_estimated': candidate.population_estimated,
        'total_score': score.total if score else None,
        'confidence': score.confidence if score else None,
        'population_score': score.population if score else None,
        'gap_score': score.gap if score else None,
        'anchor_score': score.anchor if score else None,
        'performance_score': score.performance if score else None,
        'saturation_penalty': score.saturation_penalty if score else None,
        'anchor_count': candidate.anchor_count,
        'store_count_10km': candidate.store_count_10km,
        'cluster_size': candidate.cluster_size,
        'cluster_members': candidate.cluster_members,
        'completeness_score': dq.completeness_score if dq else None,
        'evidence_check': dq.evidence_check if dq else None,
        'reliability_flags': '|'.join(dq.reliability_flags) if dq else '',
        'rationale': rationale,
    }


def result_to_frames(result):
    """SelectionResult -> (selected_df, suppressed_df, ledger_df)，用于写 CSV"""
    selected_df = pd.DataFrame([candidate_to_row(c, result.rationales.get(c.id)) for c in result.selected])

    suppressed_rows = []
    for audit in result.clusters:
        for member in audit.suppressed:
            row = candidate_to_row(member.candidate)
            row.update({
                'reason': 'drive_time',
                'kept_by': audit.center.id,
                'drive_time_minutes': round(member.drive_time_minutes, 2),
                'distance_m': round(member.distance_m, 1),
            })
            suppressed_rows.append(row)
    clustered_ids = {r['id'] for r in suppressed_rows}
    for c in result.suppressed:
        if c.id not in clustered_ids:
            suppressed_rows.append(dict(candidate_to_row(c), reason='min_spacing'))
    for c in result.capped:
        suppressed_rows.append(dict(candidate_to_row(c), reason='regional_cap'))
    suppressed_df = pd.DataFrame(suppressed_rows)

    ledger_df = pd.DataFrame([dict(region_code=code, **entry) for code, entry in result.fairness_ledger.items()])
    return selected_df, suppressed_df, ledger_df


def print_report(result, duration=None):
    summary = result.summary
    counts = summary.get('stage_counts', {})

    print("-" * 50)
    print("✅ 选址流水线完成！")
    if duration is not None:
        print(f"⏱️ 总耗时: {duration:.1f}s")
    print(f"📍 入选站点: {len(result.selected)} / 目标 {summary.get('target')}")
    if summary.get('available_below_target'):
        print(f"⚠️ 警告: 可用候选不足，缺口 {summary.get('shortfall')}")
    print("-" * 50)
    print("📊 各阶段统计:")
    for stage, n in counts.items():
        print(f"   - {stage:<12}: {n}")
    print("🗺️ 区域分布:")
    for code, n in result.region_distribution.items():
        entry = result.fairness_ledger.get(code, {})
        flag = " ⚠️" if entry.get('flagged') else ""
        print(f"   - {code}: {n} (配额 {entry.get('quota')}, 可用 {entry.get('available')}){flag}")
    stats = summary.get('drive_time_stats') or {}
    if stats:
        print(f"🚗 最近邻车程: 平均 {stats['avg_nearest_neighbor_drive_time']:.1f}min, "
              f"最短 {stats['min_drive_time']:.1f}min, 车程内点对 {stats['clustered_pairs']}")
    print(f"🔑 运行指纹: {summary.get('fingerprint')}" + (" (与近期运行重复)" if summary.get('repeat_of_recent') else ""))
    print("-" * 50)


def summary_to_json(summary):
    return json.dumps(summary, ensure_ascii=False, indent=2, default=str)
