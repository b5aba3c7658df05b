"""dpm 核心：依赖图、spec 模型、内容寻址包对象"""
