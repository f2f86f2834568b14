"""常量定义：HTTP 状态码、上传进度阶段与文件标记类别。"""

from fastapi import status

HTTP_STATUS_OK = status.HTTP_200_OK
HTTP_STATUS_BAD_REQUEST = status.HTTP_400_BAD_REQUEST
HTTP_STATUS_NOT_FOUND = status.HTTP_404_NOT_FOUND
HTTP_STATUS_SERVICE_UNAVAILABLE = status.HTTP_503_SERVICE_UNAVAILABLE

# 上传进度阶段（百分比）
UPLOAD_PROGRESS_START = 25
UPLOAD_PROGRESS_UPLOADED = 75
UPLOAD_PROGRESS_COMPLETE = 100

# 拖拽载荷中携带内部节点的数据类型
INTERNAL_DRAG_MIME = "application/json"
EXTERNAL_FILES_TYPE = "Files"

# 拖拽到空白区域时的高亮目标（“移动到当前文件夹”）
BACKGROUND_TARGET = "background"

DEFAULT_MIME_TYPE = "application/octet-stream"

# 文件标记类别 -> 数据库列
FILE_FLAG_COLUMNS = {
    "handbook": "is_employee_handbook",
    "annual_training": "is_annual_training",
}
