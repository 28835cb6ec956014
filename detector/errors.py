"""Setup errors raised by the detector components."""


class ModelLoadError(RuntimeError):
    """ネットワークの設定ファイルまたは重みを読み込めなかった。"""


class CaptureOpenError(RuntimeError):
    """カメラ・動画・画像のいずれも開けなかった。"""
