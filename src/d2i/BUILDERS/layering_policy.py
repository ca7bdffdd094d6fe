"""
The layering policy for JVM application images.

Layers go from least to most frequently changing content: third-party jars,
then library sources, then compiled application classes. The runtime
classpath searches in the opposite direction so application classes win.
"""
from typing import List, Tuple

APP_ROOT = "/app"
JARS = "jars"
LIB = "lib"
CLASSES = "classes"

JAVA_EXECUTABLE = "java"
JVM_FLAGS = ["-Dclojure.main.report=stderr", "-Dfile.encoding=UTF-8"]
CLASSPATH_SEPARATOR = ":"


def mount_path(name: str) -> str:
    """Mount path of an artifact directory inside the image."""
    return f"{APP_ROOT}/{name}"


def namespace_to_class(namespace: str) -> str:
    """
    Translate a namespace name to the JVM class name it compiles to,
    e.g. 'my-app.core' -> 'my_app.core'.
    """
    return namespace.replace("-", "_")


class LayeringPolicy:
    """
    Fixes the layer order, the classpath and the entrypoint command line.
    """

    layer_order: Tuple[str, ...] = (JARS, LIB, CLASSES)
    working_directory: str = APP_ROOT

    def classpath(self) -> str:
        entries = [mount_path(CLASSES), mount_path(LIB), f"{mount_path(JARS)}/*"]
        return CLASSPATH_SEPARATOR.join(entries)

    def entrypoint(self, main: str) -> List[str]:
        """
        Build the container entrypoint that runs a main namespace.

        :param main: Main namespace, e.g. 'my-app.core'.
        :return: The argument vector.
        """
        return [JAVA_EXECUTABLE, *JVM_FLAGS, "-cp", self.classpath(), namespace_to_class(main)]
