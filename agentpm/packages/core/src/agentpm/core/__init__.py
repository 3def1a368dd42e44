"""agentpm Core -- 任务状态机、流式缓冲与持久化"""
