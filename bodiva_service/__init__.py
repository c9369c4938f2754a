"""
BODIVA 行情数据服务
独立的行情数据微服务，提供 HTTP 接口

架构分层：
  数据获取层 (Acquisition)  → 多策略回退拉取每日行情表格
  解析层     (Extraction)   → 表格 / 粘贴文本 → 结构化记录
  处理层     (Processing)   → 批内去重、记录标准化
  存储层     (Store)        → 按 (date, symbol) 幂等 upsert
  缓存层     (Cache)        → Redis / 文件二级缓存
  分析层     (Analysis)     → 均线、支撑阻力、趋势预测、市场统计
"""

__version__ = "1.0.0"
