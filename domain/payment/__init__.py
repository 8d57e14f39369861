"""支付流水领域：每次向支付渠道发起的尝试、人工确认与退款都对应一条流水"""
