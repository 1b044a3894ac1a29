"""State callbacks the engine pushes to a presentation layer."""

from story_cut_player.models import TextState, VisualState


class Presenter:
    """No-op presentation layer; override the callbacks you need."""

    def on_visual_state(self, state: VisualState) -> None:
        pass

    def on_text_state(self, state: TextState) -> None:
        pass

    def on_loading_state(self, is_loading: bool, message: str = "") -> None:
        pass

    def on_playback_finished(self) -> None:
        pass

    def on_playback_error(self, error: Exception) -> None:
        pass


class ConsolePresenter(Presenter):
    """Prints state changes, for headless playback from the CLI."""

    def __init__(self, out=None):
        self.out = out

    def _print(self, text: str) -> None:
        print(text, file=self.out)

    def on_visual_state(self, state: VisualState) -> None:
        parts = []
        if state.background_image_url:
            parts.append(f"image={state.background_image_url}")
        if state.media_color:
            parts.append(f"color={state.media_color}")
        if state.overlay_color:
            parts.append(f"overlay={state.overlay_color}@{state.overlay_transparency}")
        if state.zoom_scale.start != 1.0 or state.zoom_scale.end != 1.0:
            parts.append(f"zoom={state.zoom_scale.start}->{state.zoom_scale.end}")
        for effect in state.effects:
            parts.append(f"{effect.kind}:{effect.direction}")
        self._print(f"  [visual] {' '.join(parts) or 'clear'}")

    def on_text_state(self, state: TextState) -> None:
        self._print(f"  [{state.speaker_tag}] ({state.sentence_index + 1}/{state.sentence_count}) {state.display_text}")

    def on_loading_state(self, is_loading: bool, message: str = "") -> None:
        if is_loading:
            self._print(message)

    def on_playback_finished(self) -> None:
        self._print("Playback finished.")

    def on_playback_error(self, error: Exception) -> None:
        self._print(f"Playback failed: {error}")
