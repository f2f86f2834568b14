"""Filedesk：层级文件/文件夹管理服务。"""
