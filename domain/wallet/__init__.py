"""钱包领域：余额为已完成流水金额之和的物化结果"""
