"""
数据流分层架构
  Layer 1 – Acquisition  : 多策略获取原始行情表格（中转 → 公共代理 → 手动上传）
  Layer 1.5 – Extraction : 表格解码、表头定位、葡语数字解析
  Layer 2 – Store        : 幂等 upsert 存储（MongoDB → 内存）
  Layer 2.5 – Cache      : 单标的历史缓存（Redis → 文件）
  Layer 3 – Processing   : 批内去重与格式化
  Layer 4 – Analysis     : 技术指标、预测与市场汇总
"""
