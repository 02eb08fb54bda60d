"""
构建准备流程的错误分类。

可恢复错误（工具回退、模板替换）由组件内部处理并降级为警告；
其余错误中止流程，并由编排器附带组件名上报。
"""


class BuildPrepError(RuntimeError):
    """所有流程错误的基类。"""


class ToolUnavailable(BuildPrepError):
    """没有任何可用的图片处理工具。"""


class TransformFailed(BuildPrepError):
    """所有可用工具都已执行，但没有一个产出合格结果。"""


class SourceImageError(BuildPrepError):
    """源图片缺失或无法读取。"""


class StructuralCorruption(BuildPrepError):
    """清单或描述文件无法解析，或结构不符合要求。"""


class PatchError(BuildPrepError):
    """某个规则组无法完整应用。"""


class RetrievalError(BuildPrepError):
    """签名材料获取失败（网络、授权、超时或本地文件缺失）。"""


class CredentialError(BuildPrepError):
    """证书材料不完整或格式转换失败。"""


class ProfileError(BuildPrepError):
    """签名描述文件无法解码或缺少关键字段。"""


class VerificationFailure(BuildPrepError):
    """修改后的校验未通过。"""
