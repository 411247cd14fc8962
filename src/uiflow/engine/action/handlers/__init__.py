# 导入这些模块以触发 @register_action 装饰器自动注册
from . import state, navigation, feedback, api, form, data
