"""订单领域：订单、订单行、状态历史与状态机"""
