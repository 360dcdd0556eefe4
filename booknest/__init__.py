"""BookNest 订单与支付对账服务"""
