from humanizer.tasks.rewrite import process_rewrite_job

# 对外导出任务函数
__all__ = ["process_rewrite_job"]
