"""商家（外部协作方）的只读视图"""
