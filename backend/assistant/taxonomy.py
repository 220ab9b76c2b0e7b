"""
Keyword taxonomy for task categorization.

Categories are plain configuration data: a mapping of tag to an ordered
tuple of substrings. Adding a category (or a keyword) never requires
touching the suggestion rules.
"""

from typing import Dict, Tuple


OTHER_CATEGORY = 'other'
URGENT_CATEGORY = 'urgent'

TASK_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    'work': ('会议', '项目', '报告', '演示', '代码', '开发', '设计', '文档', '邮件', '客户', '团队'),
    'study': ('学习', '阅读', '课程', '作业', '考试', '复习', '笔记', '练习'),
    'life': ('购物', '买菜', '做饭', '洗衣', '打扫', '整理', '维修', '缴费'),
    'health': ('运动', '健身', '跑步', '瑜伽', '体检', '医生', '吃药'),
    'social': ('聚会', '约会', '拜访', '电话', '聊天', '聚餐'),
    'finance': ('账单', '支付', '转账', '投资', '理财', '报销'),
    'travel': ('旅行', '出差', '订票', '酒店', '行程'),
    URGENT_CATEGORY: ('紧急', '重要', '尽快', '立即', '马上', '今天必须'),
}

URGENT_KEYWORDS: Tuple[str, ...] = TASK_CATEGORIES[URGENT_CATEGORY]

# Display names shown in suggestion text
CATEGORY_NAMES: Dict[str, str] = {
    'work': '工作',
    'study': '学习',
    'life': '生活',
    'health': '健康',
    'social': '社交',
    'finance': '财务',
    'travel': '旅行',
    URGENT_CATEGORY: '紧急',
}


def category_display_name(category: str) -> str:
    """Return the localized name of a category, or the tag itself."""
    return CATEGORY_NAMES.get(category, category)
