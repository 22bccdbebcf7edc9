import pandas as pd


class MetricsSink:
    """
    调用方持有的指标接收器，逐阶段传入
    默认实现什么都不做，核心内部不保存任何全局状态
    """

    def count(self, stage, name, value=1):
        pass

    def gauge(self, stage, name, value):
        pass


class NullMetricsSink(MetricsSink):
    pass


class InMemoryMetricsSink(MetricsSink):
    """把指标按行收集下来，方便导出成 DataFrame 做报表"""

    def __init__(self):
        self.rows = []

    def count(self, stage, name, value=1):
        self.rows.append({'stage': stage, 'metric': name, 'kind': 'count', 'value': value})

    def gauge(self, stage, name, value):
        self.rows.append({'stage': stage, 'metric': name, 'kind': 'gauge', 'value': value})

    def value(self, stage, name):
        values = [r['value'] for r in self.rows if r['stage'] == stage and r['metric'] == name]
        if not values:
            return None
        kinds = {r['kind'] for r in self.rows if r['stage'] == stage and r['metric'] == name}
        return sum(values) if kinds == {'count'} else values[-1]

    def to_frame(self):
        return pd.DataFrame(self.rows, columns=['stage', 'metric', 'kind', 'value'])
