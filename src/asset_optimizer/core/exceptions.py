"""项目内使用的自定义异常定义。"""


class AssetOptimizerError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(AssetOptimizerError):
    """配置或输入参数不合法时抛出，属于致命错误。"""


class MissingDependencyError(AssetOptimizerError):
    """缺少必需的外部工具时抛出。"""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"缺少依赖工具: {', '.join(self.missing)}")


class TransformError(AssetOptimizerError):
    """单个文件的编码/压缩失败。"""


class MetadataError(AssetOptimizerError):
    """写入元数据标记失败。"""
